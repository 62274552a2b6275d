"""
Unit Tests for the Counter Synchronizer
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.benefit_service.counters import CounterSynchronizer
from microservices.benefit_service.models import BenefitState
from microservices.benefit_service.protocols import BenefitStorageError


class TestSyncBusiness:
    """Tests for sync_business"""

    @pytest.mark.asyncio
    async def test_counts_only_active_benefits(self, mock_repository, graph, factory):
        business_id = graph.linked_business_id
        for state in (BenefitState.ACTIVE, BenefitState.ACTIVE, BenefitState.INACTIVE, BenefitState.EXHAUSTED):
            mock_repository.add_benefit(factory.make_benefit(business_id=business_id, state=state))

        count = await CounterSynchronizer(mock_repository).sync_business(business_id)

        assert count == 2
        assert mock_repository.businesses[business_id].active_benefit_count == 2

    @pytest.mark.asyncio
    async def test_idempotent(self, mock_repository, graph, factory):
        mock_repository.add_benefit(factory.make_benefit(business_id=graph.direct_business_id))
        counters = CounterSynchronizer(mock_repository)
        assert await counters.sync_business(graph.direct_business_id) == 1
        assert await counters.sync_business(graph.direct_business_id) == 1


class TestSyncAll:
    """Tests for sync_all"""

    @pytest.mark.asyncio
    async def test_all_known_businesses(self, mock_repository, graph, factory):
        mock_repository.add_benefit(factory.make_benefit(business_id=graph.linked_business_id))
        summary = await CounterSynchronizer(mock_repository).sync_all()

        assert summary.processed == 2
        assert summary.synchronized == 2
        assert summary.counts == {graph.linked_business_id: 1, graph.direct_business_id: 0}
        assert summary.failed == []

    @pytest.mark.asyncio
    async def test_failures_are_skipped(self, mock_repository, graph):
        original = mock_repository.count_active_benefits

        async def flaky(business_id):
            if business_id == graph.linked_business_id:
                raise BenefitStorageError("timeout", operation="count_active_benefits")
            return await original(business_id)

        mock_repository.count_active_benefits = flaky
        summary = await CounterSynchronizer(mock_repository).sync_all()

        assert summary.failed == [graph.linked_business_id]
        assert summary.synchronized == 1
        assert graph.direct_business_id in summary.counts
