"""
Component Test Mocks

Shared mock implementations for benefit_service tests.
These mocks replace real I/O dependencies (database, NATS).
"""

from .benefit_repository_mock import MockBenefitRepository
from .nats_mock import MockEventBus

__all__ = [
    'MockBenefitRepository',
    'MockEventBus',
]
