"""Validated, read-only topic taxonomy with hierarchical lookups."""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import TaxonomyValidationError
from .models import Topic
from .ports import TaxonomyDataSource

logger = logging.getLogger(__name__)


class TopicTaxonomy:
    """Immutable catalog of topics indexed by id, parent and lowercase name.

    Instances are built by :func:`load_taxonomy`, which validates the whole
    batch first, so a ``TopicTaxonomy`` never holds a partial catalog.
    """

    def __init__(self, topics: Iterable[Topic], version: str = ""):
        self.version = version
        self._topics: Dict[int, Topic] = {}
        self._children: Dict[int, List[int]] = {}
        self._name_to_id: Dict[str, int] = {}

        for topic in topics:
            self._topics[topic.id] = topic
            self._name_to_id[topic.name.lower()] = topic.id
        for topic in self._topics.values():
            if topic.parent_id is not None:
                self._children.setdefault(topic.parent_id, []).append(topic.id)

    def __len__(self) -> int:
        return len(self._topics)

    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._topics

    @property
    def topics(self) -> List[Topic]:
        return list(self._topics.values())

    def get_by_id(self, topic_id: int) -> Optional[Topic]:
        return self._topics.get(topic_id)

    def get_by_name(self, name: str) -> Optional[Topic]:
        topic_id = self._name_to_id.get(name.lower())
        return self._topics.get(topic_id) if topic_id is not None else None

    def get_children(self, topic_id: int) -> List[Topic]:
        return [self._topics[child_id] for child_id in self._children.get(topic_id, [])]

    def get_parent(self, topic_id: int) -> Optional[Topic]:
        topic = self._topics.get(topic_id)
        if topic is None or topic.parent_id is None:
            return None
        return self._topics.get(topic.parent_id)

    def get_ancestors(self, topic_id: int) -> List[Topic]:
        """Return ancestors from the immediate parent up to the root."""
        ancestors: List[Topic] = []
        parent = self.get_parent(topic_id)
        while parent is not None:
            ancestors.append(parent)
            parent = self.get_parent(parent.id)
        return ancestors

    def get_descendants(self, topic_id: int) -> List[Topic]:
        """Return every descendant in pre-order (child, then its subtree)."""
        descendants: List[Topic] = []
        stack = list(reversed(self._children.get(topic_id, [])))
        while stack:
            current_id = stack.pop()
            descendants.append(self._topics[current_id])
            stack.extend(reversed(self._children.get(current_id, [])))
        return descendants

    def get_roots(self) -> List[Topic]:
        return [topic for topic in self._topics.values() if topic.parent_id is None]

    def get_topics_by_level(self, level: int) -> List[Topic]:
        return [topic for topic in self._topics.values() if topic.level == level]

    def search(self, keyword: str) -> List[Topic]:
        """Case-insensitive substring search over names and descriptions."""
        term = keyword.lower()
        return [
            topic
            for topic in self._topics.values()
            if term in topic.name.lower() or term in topic.description.lower()
        ]

    def is_sensitive(self, topic_id: int) -> bool:
        topic = self._topics.get(topic_id)
        return topic.is_sensitive if topic is not None else False

    def get_non_sensitive_topics(self) -> List[Topic]:
        return [topic for topic in self._topics.values() if not topic.is_sensitive]


def load_taxonomy(raw_topics: Iterable[Mapping[str, Any]], version: str = "") -> TopicTaxonomy:
    """Validate raw topic records and build a :class:`TopicTaxonomy`.

    Checks run in order: field types, duplicate ids, parent references,
    then level consistency. The first violation raises
    :class:`TaxonomyValidationError`.
    """
    topics: List[Topic] = []
    seen_ids = set()
    for raw in raw_topics:
        topic = _parse_topic(raw)
        if topic.id in seen_ids:
            raise TaxonomyValidationError(f"Duplicate topic ID found: {topic.id}")
        seen_ids.add(topic.id)
        topics.append(topic)

    for topic in topics:
        if topic.parent_id is not None and topic.parent_id not in seen_ids:
            raise TaxonomyValidationError(
                f"Topic {topic.id} references non-existent parent {topic.parent_id}"
            )

    by_id = {topic.id: topic for topic in topics}
    for topic in topics:
        if topic.parent_id is None:
            if topic.level != 0:
                raise TaxonomyValidationError(
                    f"Root topic {topic.id} should have level 0, got {topic.level}"
                )
            continue
        expected = by_id[topic.parent_id].level + 1
        if topic.level != expected:
            raise TaxonomyValidationError(
                f"Invalid hierarchy level for topic {topic.id}: "
                f"level {topic.level} should be {expected} (parent level + 1)"
            )

    return TopicTaxonomy(topics, version=version)


def load_taxonomy_document(document: Any) -> TopicTaxonomy:
    """Validate a whole catalog document (``version`` + ``topics``) and load it."""
    if not isinstance(document, Mapping):
        raise TaxonomyValidationError("Invalid taxonomy data: must be a mapping")
    version = document.get("version")
    if not isinstance(version, str) or not version:
        raise TaxonomyValidationError("Invalid taxonomy data: version is required and must be a string")
    topics = document.get("topics")
    if not isinstance(topics, list):
        raise TaxonomyValidationError("Invalid taxonomy data: topics is required and must be a list")
    if not topics:
        raise TaxonomyValidationError("Invalid taxonomy data: topics list cannot be empty")
    return load_taxonomy(topics, version=version)


class TaxonomyLoader:
    """Loads the catalog from a data source once and memoizes the result."""

    def __init__(self, source: TaxonomyDataSource):
        self.source = source
        self._cached: Optional[TopicTaxonomy] = None

    def load(self) -> TopicTaxonomy:
        if self._cached is None:
            taxonomy = load_taxonomy_document(self.source.load_raw_taxonomy())
            logger.info("Loaded taxonomy %s with %d topics", taxonomy.version, len(taxonomy))
            self._cached = taxonomy
        return self._cached

    def clear_cache(self) -> None:
        """Forget the cached taxonomy so the next ``load`` re-reads the source."""
        self._cached = None


def _parse_topic(raw: Any) -> Topic:
    if not isinstance(raw, Mapping):
        raise TaxonomyValidationError("Invalid topic: must be a mapping")

    topic_id = raw.get("id")
    if not _is_int(topic_id) or topic_id <= 0:
        raise TaxonomyValidationError(f"Invalid topic ID: must be a positive integer, got {topic_id!r}")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise TaxonomyValidationError(f"Invalid topic name for ID {topic_id}: must be a non-empty string")

    level = raw.get("level")
    if not _is_int(level) or level < 0:
        raise TaxonomyValidationError(f"Invalid topic level for ID {topic_id}: must be a non-negative integer")

    is_sensitive = raw.get("is_sensitive")
    if not isinstance(is_sensitive, bool):
        raise TaxonomyValidationError(f"Invalid is_sensitive flag for ID {topic_id}: must be a boolean")

    description = raw.get("description")
    if not isinstance(description, str) or not description:
        raise TaxonomyValidationError(
            f"Invalid topic description for ID {topic_id}: must be a non-empty string"
        )

    parent_id = raw.get("parent_id")
    if parent_id is not None and (not _is_int(parent_id) or parent_id <= 0):
        raise TaxonomyValidationError(
            f"Invalid parent ID for topic {topic_id}: must be a positive integer or absent"
        )

    return Topic(
        id=topic_id,
        name=name,
        level=level,
        is_sensitive=is_sensitive,
        description=description,
        parent_id=parent_id,
    )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
