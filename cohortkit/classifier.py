"""Domain-to-topic classification with confidence scoring and keyword fallback."""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from .errors import InvalidTopicReference
from .models import (
    SOURCE_KEYWORD,
    SOURCE_MANUAL,
    ClassificationResult,
    DomainMapping,
    KeywordRule,
)
from .taxonomy import TopicTaxonomy

logger = logging.getLogger(__name__)

PARENT_DOMAIN_DECAY = 0.8
KEYWORD_CONFIDENCE_CAP = 0.7
MAX_KEYWORD_TOPICS = 3

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://")
_HOST_END_RE = re.compile(r"[/?#]")


def normalize_domain(domain: str) -> str:
    """Reduce a URL or hostname to a bare, lowercase host.

    ``"HTTPS://WWW.Example.com:8080/a?x=1"`` becomes ``"example.com"``.
    """
    normalized = domain.strip().lower()
    normalized = _SCHEME_RE.sub("", normalized)
    normalized = _HOST_END_RE.split(normalized, maxsplit=1)[0]
    normalized = normalized.split(":", 1)[0]
    while normalized.startswith("www."):
        normalized = normalized[4:]
    return normalized


class DomainClassifier:
    """Maps domains to taxonomy topics.

    Lookup order is exact mapping, then parent domains (confidence decayed by
    ``PARENT_DOMAIN_DECAY``), then keyword rules. The mapping table is
    replaced wholesale on every write so readers always see a complete table.
    """

    def __init__(
        self,
        taxonomy: TopicTaxonomy,
        keyword_rules: Iterable[KeywordRule] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.taxonomy = taxonomy
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._mappings: Dict[str, DomainMapping] = {}
        rules = list(keyword_rules)
        for rule in rules:
            self._check_topic_ids(rule.topic_ids)
        self._keyword_rules = rules

    @classmethod
    def with_presets(
        cls,
        taxonomy: TopicTaxonomy,
        presets_path: Optional[Union[str, Path]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "DomainClassifier":
        """Build a classifier seeded with the bundled (or given) preset table."""
        from .adapters.yaml_catalog import DEFAULT_PRESETS_PATH, load_domain_presets

        rows, rules = load_domain_presets(presets_path or DEFAULT_PRESETS_PATH)
        classifier = cls(taxonomy, keyword_rules=rules, clock=clock)
        for row in rows:
            classifier.add_mapping(row["domain"], row["topic_ids"], row.get("confidence", 1.0))
        logger.info("Domain classifier ready with %d mappings", len(classifier._mappings))
        return classifier

    def classify(self, domain: str) -> ClassificationResult:
        normalized = normalize_domain(domain)

        exact = self._mappings.get(normalized)
        if exact is not None:
            return ClassificationResult(
                domain=normalized,
                topic_ids=exact.topic_ids,
                confidence=exact.confidence,
                source=exact.source,
            )

        parent = self._find_parent_mapping(normalized)
        if parent is not None:
            return ClassificationResult(
                domain=normalized,
                topic_ids=parent.topic_ids,
                confidence=parent.confidence * PARENT_DOMAIN_DECAY,
                source=parent.source,
            )

        return self._classify_by_keywords(normalized)

    def classify_batch(self, domains: Sequence[str]) -> List[ClassificationResult]:
        """Classify each domain; a domain that fails degrades to a zero-confidence result."""
        results: List[ClassificationResult] = []
        for domain in domains:
            try:
                results.append(self.classify(domain))
            except Exception as exc:
                logger.warning("Domain classification failed, using empty result: %s", exc)
                fallback = normalize_domain(domain) if isinstance(domain, str) else ""
                results.append(_empty_result(fallback))
        return results

    def add_mapping(self, domain: str, topic_ids: Iterable[int], confidence: float = 1.0) -> DomainMapping:
        ids = tuple(dict.fromkeys(topic_ids))
        self._check_topic_ids(ids)
        mapping = DomainMapping(
            domain=normalize_domain(domain),
            topic_ids=ids,
            confidence=max(0.0, min(1.0, float(confidence))),
            last_updated=self._clock(),
            source=SOURCE_MANUAL,
        )
        updated = dict(self._mappings)
        updated[mapping.domain] = mapping
        self._mappings = updated
        return mapping

    def remove_mapping(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        if normalized not in self._mappings:
            return False
        updated = dict(self._mappings)
        del updated[normalized]
        self._mappings = updated
        return True

    def get_mapping(self, domain: str) -> Optional[DomainMapping]:
        return self._mappings.get(normalize_domain(domain))

    def get_all_mappings(self) -> Dict[str, DomainMapping]:
        return dict(self._mappings)

    def get_domains_for_topic(self, topic_id: int) -> List[str]:
        return [domain for domain, mapping in self._mappings.items() if topic_id in mapping.topic_ids]

    def clear_mappings(self) -> None:
        self._mappings = {}

    def _check_topic_ids(self, topic_ids: Iterable[int]) -> None:
        for topic_id in topic_ids:
            if topic_id not in self.taxonomy:
                raise InvalidTopicReference(topic_id)

    def _find_parent_mapping(self, domain: str) -> Optional[DomainMapping]:
        labels = domain.split(".")
        for index in range(1, len(labels)):
            mapping = self._mappings.get(".".join(labels[index:]))
            if mapping is not None:
                return mapping
        return None

    def _classify_by_keywords(self, domain: str) -> ClassificationResult:
        topic_scores: Dict[int, float] = {}
        matched: Dict[str, None] = {}

        for rule in self._keyword_rules:
            if not rule.keywords:
                continue
            hits = [keyword for keyword in rule.keywords if keyword.lower() in domain]
            if not hits:
                continue
            score = len(hits) / len(rule.keywords) * rule.weight
            for topic_id in rule.topic_ids:
                topic_scores[topic_id] = topic_scores.get(topic_id, 0.0) + score
            matched.update(dict.fromkeys(hits))

        if not topic_scores:
            return _empty_result(domain)

        ranked = sorted(topic_scores.items(), key=lambda item: item[1], reverse=True)[:MAX_KEYWORD_TOPICS]
        return ClassificationResult(
            domain=domain,
            topic_ids=tuple(topic_id for topic_id, _ in ranked),
            confidence=min(KEYWORD_CONFIDENCE_CAP, ranked[0][1] / 2),
            source=SOURCE_KEYWORD,
            matched_keywords=tuple(matched),
        )


def _empty_result(domain: str) -> ClassificationResult:
    return ClassificationResult(
        domain=domain,
        topic_ids=(),
        confidence=0.0,
        source=SOURCE_KEYWORD,
        matched_keywords=(),
    )
