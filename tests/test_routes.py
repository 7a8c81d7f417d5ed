"""
HTTP API: authoring, event intake and operator endpoints.
"""
import httpx
import pytest
import pytest_asyncio

from conftest import DEAL_ID, T0, TENANT_ID
from dripline.database import get_db
from dripline.dependencies.services import get_deal_context_provider
from dripline.main import app


HEADERS = {"X-Tenant-ID": TENANT_ID}


@pytest_asyncio.fixture
async def client(session_factory, deal_contexts):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_deal_context_provider] = lambda: deal_contexts
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def create_cold_leads(client) -> dict:
    response = await client.post(
        "/api/v1/drips/sequences",
        json={"pipeline_id": "sales", "stage_id": "cold_leads", "name": "Cold leads", "is_enabled": True},
        headers=HEADERS,
    )
    assert response.status_code == 201
    sequence_id = response.json()["id"]

    for step in (
        {"delay_type": "immediate", "delay_value": 0, "delay_unit": "minutes", "channel": "email",
         "email_subject": "Hi {first-name}", "email_body": "Thanks!"},
        {"delay_type": "after", "delay_value": 2, "delay_unit": "days", "channel": "sms",
         "sms_body": "Still interested?"},
    ):
        response = await client.post(f"/api/v1/drips/sequences/{sequence_id}/steps", json=step, headers=HEADERS)
        assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_tenant_header_required(client):
    response = await client.get("/api/v1/drips/sequences")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_authoring_flow(client):
    sequence = await create_cold_leads(client)
    first, second = [step["id"] for step in sequence["steps"]]

    # Invalid step: immediate with a delay
    response = await client.post(
        f"/api/v1/drips/sequences/{sequence['id']}/steps",
        json={"delay_type": "immediate", "delay_value": 3, "delay_unit": "days", "channel": "sms", "sms_body": "x"},
        headers=HEADERS,
    )
    assert response.status_code == 422

    # Incomplete reorder is rejected
    response = await client.put(
        f"/api/v1/drips/sequences/{sequence['id']}/steps/order", json={"step_ids": [second]}, headers=HEADERS
    )
    assert response.status_code == 422

    response = await client.put(
        f"/api/v1/drips/sequences/{sequence['id']}/steps/order", json={"step_ids": [second, first]}, headers=HEADERS
    )
    assert response.status_code == 200
    assert [(step["id"], step["position"]) for step in response.json()["steps"]] == [(second, 1), (first, 2)]

    # Other tenants cannot see it
    response = await client.get(f"/api/v1/drips/sequences/{sequence['id']}", headers={"X-Tenant-ID": "tenant-2"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stage_change_then_cancel(client):
    await create_cold_leads(client)

    response = await client.post(
        "/api/v1/drips/events/stage-change",
        json={"deal_id": DEAL_ID, "pipeline_id": "sales", "to_stage": "cold_leads", "occurred_at": T0.isoformat()},
        headers=HEADERS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "processed"
    assert [job["channel"] for job in body["scheduled"]] == ["email", "sms"]
    assert body["scheduled"][0]["email_subject"] == "Hi Jane"

    response = await client.get(f"/api/v1/drips/deals/{DEAL_ID}/jobs", headers=HEADERS)
    assert [job["status"] for job in response.json()] == ["pending", "pending"]

    response = await client.post(f"/api/v1/drips/deals/{DEAL_ID}/cancel", headers=HEADERS)
    assert response.json() == {"deal_id": DEAL_ID, "cancelled_count": 2}

    response = await client.get(f"/api/v1/drips/deals/{DEAL_ID}/jobs?status=cancelled", headers=HEADERS)
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_retrigger_and_failed_listing(client):
    await create_cold_leads(client)

    response = await client.post(
        f"/api/v1/drips/deals/{DEAL_ID}/retrigger",
        json={"pipeline_id": "sales", "stage_id": "cold_leads"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert len(response.json()["scheduled"]) == 2

    response = await client.get("/api/v1/drips/jobs/failed", headers=HEADERS)
    assert response.json() == []


@pytest.mark.asyncio
async def test_seed_defaults_and_metrics(client):
    response = await client.post("/api/v1/drips/sequences/seed-defaults", headers=HEADERS)
    assert response.status_code == 201
    assert "cold_leads" in {sequence["stage_id"] for sequence in response.json()}

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "drip_jobs_scheduled_total" in response.text


@pytest.mark.asyncio
async def test_cancel_ignores_other_tenants_deals(client):
    await create_cold_leads(client)
    await client.post(
        "/api/v1/drips/events/stage-change",
        json={"deal_id": DEAL_ID, "pipeline_id": "sales", "to_stage": "cold_leads", "occurred_at": T0.isoformat()},
        headers=HEADERS,
    )

    response = await client.post(f"/api/v1/drips/deals/{DEAL_ID}/cancel", headers={"X-Tenant-ID": "tenant-2"})
    assert response.json() == {"deal_id": DEAL_ID, "cancelled_count": 0}

    response = await client.post(
        "/api/v1/drips/events/stage-change",
        json={"deal_id": DEAL_ID, "pipeline_id": "sales", "kind": "archived"},
        headers={"X-Tenant-ID": "tenant-2"},
    )
    assert response.json()["cancelled_count"] == 0

    response = await client.get(f"/api/v1/drips/deals/{DEAL_ID}/jobs?status=pending", headers=HEADERS)
    assert len(response.json()) == 2
