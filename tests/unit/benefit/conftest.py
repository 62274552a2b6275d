"""
Unit Test Fixtures for Benefit Service

Provides mock fixtures and a seeded affiliation graph for unit testing.
"""

import pytest

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import BenefitConfig
from microservices.benefit_service.benefit_service import BenefitService
from microservices.benefit_service.cache import TTLCache
from microservices.benefit_service.models import AccessMode
from tests.component.mocks import MockBenefitRepository, MockEventBus
from tests.contracts.benefit.data_contract import REFERENCE_NOW, BenefitTestDataFactory


class FakeClock:
    """Settable clock for time-dependent logic"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class Graph:
    """
    Small affiliation graph:

    - association_id: the association
    - linked_business_id: business linked to the association
    - direct_business_id: business the independent member is affiliated with directly
    - association_member_id: member of the association
    - independent_member_id: member without association
    """

    def __init__(self, repository: MockBenefitRepository):
        factory = BenefitTestDataFactory
        self.association = repository.add_association(
            factory.make_association_profile(name="Riverside Neighbours")
        )
        self.association_id = self.association.association_id
        self.linked_business = repository.add_business(
            factory.make_business_profile(linked_association_ids=[self.association_id])
        )
        self.linked_business_id = self.linked_business.business_id
        self.direct_business = repository.add_business(factory.make_business_profile())
        self.direct_business_id = self.direct_business.business_id
        self.association_member = repository.add_member(
            factory.make_member_profile(association_id=self.association_id)
        )
        self.association_member_id = self.association_member.member_id
        self.independent_member = repository.add_member(
            factory.make_member_profile(affiliated_business_ids=[self.direct_business_id])
        )
        self.independent_member_id = self.independent_member.member_id

    def association_benefit(self, repository, **overrides):
        data = {
            "access_mode": AccessMode.ASSOCIATION,
            "association_ids": [self.association_id],
            "business_id": self.linked_business_id,
            "business_name": self.linked_business.name,
        }
        data.update(overrides)
        return repository.add_benefit(BenefitTestDataFactory.make_benefit(**data))


# ====================
# Fixtures
# ====================


@pytest.fixture
def now():
    return REFERENCE_NOW


@pytest.fixture
def clock(now):
    return FakeClock(now)


@pytest.fixture
def factory():
    return BenefitTestDataFactory


@pytest.fixture
def mock_repository():
    """Create mock repository"""
    return MockBenefitRepository()


@pytest.fixture
def mock_event_bus():
    """Create mock event bus"""
    return MockEventBus()


@pytest.fixture
def cache():
    return TTLCache(ttl_seconds=300, max_entries=1024)


@pytest.fixture
def graph(mock_repository):
    return Graph(mock_repository)


@pytest.fixture
def benefit_service(mock_repository, mock_event_bus, cache, clock):
    """Create benefit service with mocks"""
    return BenefitService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        config=BenefitConfig(),
        cache=cache,
        clock=clock,
    )
