"""
Storage for liquidation entities.
"""

from liquidation_engine.storage.repositories import (
    ComplianceCheckRepository,
    InMemoryRepository,
    ProviderRepository,
    Repositories,
    RequestRepository,
    ReservationRepository,
    SnapshotRepository,
    TransactionRepository,
)

__all__ = [
    "ComplianceCheckRepository",
    "InMemoryRepository",
    "ProviderRepository",
    "Repositories",
    "RequestRepository",
    "ReservationRepository",
    "SnapshotRepository",
    "TransactionRepository",
]
