"""
Component Tests for Benefit Management API

Tests create, read, update, state changes and maintenance endpoints.
"""

import pytest
from datetime import datetime, timedelta, timezone

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.benefit_service.models import BenefitState

BASE = "/api/v1/benefits"


class TestCreateBenefitEndpoint:
    """Tests for POST /api/v1/benefits"""

    def test_business_creates_benefit(self, client, mock_repository, mock_event_bus, seed, factory):
        business_id = seed.linked_business.business_id

        response = client.post(BASE, json=factory.make_create_benefit_payload(business_id, "business"))

        assert response.status_code == 201
        data = response.json()
        assert data["business_id"] == business_id
        assert data["business_name"] == seed.linked_business.name
        assert data["association_ids"] == [seed.association.association_id]
        assert data["access_mode"] == "association"
        assert data["state"] == "active"
        assert data["discount"]["kind"] == "percentage"
        assert data["benefit_id"] in mock_repository.benefits
        mock_event_bus.assert_event_published("benefit.created", {"benefit_id": data["benefit_id"]})

    def test_association_creates_for_business(self, client, seed, factory):
        payload = factory.make_create_benefit_payload(
            seed.association.association_id, "association",
            business_id=seed.other_business.business_id,
        )
        response = client.post(BASE, json=payload)
        assert response.status_code == 201
        assert response.json()["association_ids"] == [seed.association.association_id]

    def test_association_without_business_422(self, client, seed, factory):
        payload = factory.make_create_benefit_payload(seed.association.association_id, "association")
        assert client.post(BASE, json=payload).status_code == 422

    def test_end_before_start_422(self, client, seed, factory, now):
        payload = factory.make_create_benefit_payload(
            seed.other_business.business_id, "business",
            start_at=now.isoformat(), end_at=(now - timedelta(days=1)).isoformat(),
        )
        assert client.post(BASE, json=payload).status_code == 422

    def test_unknown_business_404(self, client, factory):
        payload = factory.make_create_benefit_payload("biz_missing", "business")
        assert client.post(BASE, json=payload).status_code == 404

    def test_invalid_discount_422(self, client, seed, factory):
        payload = factory.make_create_benefit_payload(
            seed.other_business.business_id, "business",
            discount={"kind": "percentage", "rate": "150"},
        )
        assert client.post(BASE, json=payload).status_code == 422

    def test_unknown_role_422(self, client, seed, factory):
        payload = factory.make_create_benefit_payload(seed.other_business.business_id, "admin")
        assert client.post(BASE, json=payload).status_code == 422

    def test_naive_timestamps_read_as_utc(self, client, seed, factory, now):
        naive_now = now.replace(tzinfo=None)
        payload = factory.make_create_benefit_payload(
            seed.other_business.business_id, "business",
            start_at=(naive_now - timedelta(days=1)).isoformat(),
            end_at=(naive_now + timedelta(days=3)).isoformat(),
        )
        response = client.post(BASE, json=payload)
        assert response.status_code == 201
        end_at = datetime.fromisoformat(response.json()["end_at"].replace("Z", "+00:00"))
        assert end_at == now + timedelta(days=3)


class TestGetUpdateBenefitEndpoints:
    """Tests for GET and PATCH /api/v1/benefits/{benefit_id}"""

    def test_get_benefit(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit())
        response = client.get(f"{BASE}/{benefit.benefit_id}")
        assert response.status_code == 200
        assert response.json()["title"] == benefit.title

    def test_get_unknown_404(self, client):
        assert client.get(f"{BASE}/ben_missing").status_code == 404

    def test_patch(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit())
        response = client.patch(f"{BASE}/{benefit.benefit_id}", json={"title": "Two for one", "featured": True})
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Two for one"
        assert data["featured"] is True
        assert data["category"] == benefit.category

    def test_patch_cap_exhausts(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit(redemption_count=5))
        data = client.patch(f"{BASE}/{benefit.benefit_id}", json={"global_cap": 5}).json()
        assert data["state"] == "exhausted"

    def test_patch_unknown_404(self, client):
        assert client.patch(f"{BASE}/ben_missing", json={"title": "x"}).status_code == 404

    def test_patch_naive_end_at(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit())
        response = client.patch(f"{BASE}/{benefit.benefit_id}", json={"end_at": "2030-01-01T00:00:00"})
        assert response.status_code == 200
        stored = mock_repository.benefits[benefit.benefit_id]
        assert stored.end_at == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_patch_cap_below_redemptions_422(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit(redemption_count=5))
        response = client.patch(f"{BASE}/{benefit.benefit_id}", json={"global_cap": 3})
        assert response.status_code == 422
        assert mock_repository.benefits[benefit.benefit_id].global_cap is None


class TestStateEndpoints:
    """Tests for state transitions"""

    def test_deactivate(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit())
        response = client.post(f"{BASE}/{benefit.benefit_id}/deactivate")
        assert response.status_code == 200
        assert response.json()["state"] == "inactive"
        assert mock_repository.benefits[benefit.benefit_id].state == BenefitState.INACTIVE

    def test_reactivate(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit(state=BenefitState.INACTIVE))
        response = client.put(f"{BASE}/{benefit.benefit_id}/state", json={"state": "active"})
        assert response.status_code == 200
        assert response.json()["state"] == "active"

    def test_activate_ended_422(self, client, mock_repository, factory, now):
        benefit = mock_repository.add_benefit(factory.make_benefit(
            state=BenefitState.INACTIVE, end_at=now - timedelta(hours=1),
        ))
        response = client.put(f"{BASE}/{benefit.benefit_id}/state", json={"state": "active"})
        assert response.status_code == 422

    def test_exhaust_uncapped_422(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit())
        response = client.put(f"{BASE}/{benefit.benefit_id}/state", json={"state": "exhausted"})
        assert response.status_code == 422

    def test_invalid_state_value_422(self, client, mock_repository, factory):
        benefit = mock_repository.add_benefit(factory.make_benefit())
        response = client.put(f"{BASE}/{benefit.benefit_id}/state", json={"state": "paused"})
        assert response.status_code == 422


class TestMaintenanceEndpoints:
    """Tests for maintenance jobs"""

    def test_expire(self, client, mock_repository, mock_event_bus, factory, now):
        ended = mock_repository.add_benefit(factory.make_benefit(end_at=now - timedelta(minutes=5)))
        mock_repository.add_benefit(factory.make_benefit())

        response = client.post(f"{BASE}/maintenance/expire")

        assert response.status_code == 200
        data = response.json()
        assert data["expired_count"] == 1
        assert data["failed"] == []
        assert mock_repository.benefits[ended.benefit_id].state == BenefitState.EXPIRED
        mock_event_bus.assert_event_published("benefit.expired", {"benefit_id": ended.benefit_id})

    def test_counters_for_all_businesses(self, client, mock_repository, seed, factory):
        mock_repository.add_benefit(factory.make_benefit(business_id=seed.linked_business.business_id))

        response = client.post(f"{BASE}/maintenance/counters")

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 2
        assert data["counts"] == {
            seed.linked_business.business_id: 1,
            seed.other_business.business_id: 0,
        }

    def test_counters_for_one_business(self, client, seed):
        data = client.post(
            f"{BASE}/maintenance/counters", params={"business_id": seed.other_business.business_id}
        ).json()
        assert data["counts"] == {seed.other_business.business_id: 0}
