"""
Domain services package.

Services orchestrate domain logic that doesn't naturally belong to a single
entity. They coordinate between entities and ports to implement use cases.

Services depend only on domain entities, value objects, and port protocols
(never on concrete implementations).
"""

from .bestseller_ingestion import BestsellerIngestionService
from .circuit_breaker import CircuitBreaker, Rail
from .clustering import EditionClusterer
from .identity import IdentityResolver
from .tiered_search import TieredSearchOrchestrator
from .upsert_engine import UpsertEngine

__all__ = [
    "BestsellerIngestionService",
    "CircuitBreaker",
    "EditionClusterer",
    "IdentityResolver",
    "Rail",
    "TieredSearchOrchestrator",
    "UpsertEngine",
]
