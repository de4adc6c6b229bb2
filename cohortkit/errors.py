"""Exceptions raised by cohortkit services."""

from typing import Optional


class CohortKitError(Exception):
    """Base class for all cohortkit errors."""


class TaxonomyValidationError(CohortKitError):
    """The topic catalog is malformed; nothing from it was loaded."""


class InvalidTopicReference(CohortKitError):
    def __init__(self, topic_id: object, message: Optional[str] = None):
        self.topic_id = topic_id
        super().__init__(message or f"Invalid topic ID: {topic_id}")


class EventValidationError(CohortKitError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class ConfigurationError(CohortKitError):
    """An environment setting could not be parsed."""
