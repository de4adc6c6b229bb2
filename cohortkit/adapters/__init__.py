"""Adapters for plugging cohortkit into storage backends and catalog files."""

from .memory_store import InMemoryEventStore
from .sqlalchemy_store import SQLAlchemyEventStore
from .yaml_catalog import YamlTaxonomySource, load_domain_presets

__all__ = [
    "InMemoryEventStore",
    "SQLAlchemyEventStore",
    "YamlTaxonomySource",
    "load_domain_presets",
]
