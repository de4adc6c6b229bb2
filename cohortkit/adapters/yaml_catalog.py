"""YAML-backed catalog sources for the taxonomy and the domain preset table."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union

import yaml

from ..errors import TaxonomyValidationError
from ..models import KeywordRule

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_TAXONOMY_PATH = DATA_DIR / "topic_taxonomy.yml"
DEFAULT_PRESETS_PATH = DATA_DIR / "domain_presets.yml"


class YamlTaxonomySource:
    """Reads the raw topic catalog from a YAML document."""

    def __init__(self, path: Union[str, Path] = DEFAULT_TAXONOMY_PATH):
        self.path = Path(path)

    def load_raw_taxonomy(self) -> Mapping[str, Any]:
        document = _read_yaml(self.path)
        if not isinstance(document, Mapping):
            raise TaxonomyValidationError(f"Taxonomy file {self.path} must contain a mapping")
        return document


def load_domain_presets(
    path: Union[str, Path] = DEFAULT_PRESETS_PATH,
) -> Tuple[List[Dict[str, Any]], List[KeywordRule]]:
    """Parse ``domain_presets.yml`` into raw mapping rows and keyword rules.

    Mapping rows keep their raw shape (``domain``, ``topic_ids``,
    ``confidence``) so the classifier can validate them against the taxonomy
    through its normal ``add_mapping`` path.
    """
    document = _read_yaml(Path(path)) or {}
    mappings = [dict(row) for row in document.get("mappings", [])]
    rules = [
        KeywordRule(
            keywords=tuple(str(keyword).lower() for keyword in row.get("keywords", [])),
            topic_ids=tuple(int(topic_id) for topic_id in row.get("topic_ids", [])),
            weight=float(row.get("weight", 1.0)),
        )
        for row in document.get("keyword_rules", [])
    ]
    logger.debug("Loaded %d preset mappings and %d keyword rules from %s", len(mappings), len(rules), path)
    return mappings, rules


def _read_yaml(path: Path) -> Any:
    with path.open(encoding="utf-8") as handle:
        return yaml.safe_load(handle)
