"""
Domain layer - Core business logic and entities.

This layer contains the canonical book entity, value objects, the error
taxonomy and the ports (interfaces) that the infrastructure layer must
implement.

It has NO dependencies on databases, HTTP clients or web frameworks.
"""

from .entities import CanonicalBook, WorkCluster, WorkClusterMember
from .value_objects import (
    BackfillTask,
    BookChangeEvent,
    Dimensions,
    ExternalIdentifiers,
    IngestionSummary,
    NormalizedAggregate,
    UpsertResult,
)

__all__ = [
    # Entities
    "CanonicalBook",
    "WorkCluster",
    "WorkClusterMember",
    # Value Objects
    "BackfillTask",
    "BookChangeEvent",
    "Dimensions",
    "ExternalIdentifiers",
    "IngestionSummary",
    "NormalizedAggregate",
    "UpsertResult",
]
