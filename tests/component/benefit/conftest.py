"""
Component Test Fixtures for Benefit Service

Provides fixtures for component testing with FastAPI TestClient.
The app lifespan is not entered, so no PostgreSQL or NATS is needed.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import BenefitConfig
from microservices.benefit_service.benefit_service import BenefitService
from microservices.benefit_service.cache import TTLCache
from tests.contracts.benefit.data_contract import REFERENCE_NOW, BenefitTestDataFactory


BASE = "/api/v1/benefits"


class Seed:
    """One association, a linked business, an unlinked business and two members"""

    def __init__(self, repository):
        factory = BenefitTestDataFactory
        self.association = repository.add_association(
            factory.make_association_profile(name="Harbour Traders")
        )
        self.linked_business = repository.add_business(
            factory.make_business_profile(linked_association_ids=[self.association.association_id])
        )
        self.other_business = repository.add_business(factory.make_business_profile())
        self.member = repository.add_member(
            factory.make_member_profile(association_id=self.association.association_id)
        )
        self.outsider = repository.add_member(factory.make_member_profile())


@pytest.fixture
def factory():
    return BenefitTestDataFactory


@pytest.fixture
def now():
    return REFERENCE_NOW


@pytest.fixture
def seed(mock_repository):
    return Seed(mock_repository)


@pytest.fixture
def benefit_service(mock_repository, mock_event_bus, now):
    """Service over the in-memory repository with a fixed clock"""
    mock_repository.db = MagicMock()
    mock_repository.db.health_check = AsyncMock(return_value=True)
    return BenefitService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        config=BenefitConfig(),
        cache=TTLCache(ttl_seconds=300, max_entries=1024),
        clock=lambda: now,
    )


@pytest.fixture
def client(benefit_service, mock_repository, mock_event_bus):
    """Create FastAPI test client with mocked dependencies"""
    from fastapi.testclient import TestClient

    # Patch the globals in main module
    with patch("microservices.benefit_service.main.benefit_service", benefit_service), \
         patch("microservices.benefit_service.main.repository", mock_repository), \
         patch("microservices.benefit_service.main.event_bus", mock_event_bus):

        from microservices.benefit_service.main import app

        # No context manager: the lifespan would connect to PostgreSQL and NATS
        yield TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def uninitialized_client():
    """Client whose service global is unset"""
    from fastapi.testclient import TestClient

    with patch("microservices.benefit_service.main.benefit_service", None), \
         patch("microservices.benefit_service.main.repository", None), \
         patch("microservices.benefit_service.main.event_bus", None):
        from microservices.benefit_service.main import app
        yield TestClient(app, raise_server_exceptions=False)
