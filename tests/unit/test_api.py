"""Unit tests for the call, cron, knowledge and health API endpoints."""
import pytest
from datetime import datetime, timedelta

from sqlalchemy import select

from outbound_caller.core.config import settings
from outbound_caller.core.exceptions import ConfigError, ProviderError
from outbound_caller.db.models import ScheduledTask
from tests.fakes import TEST_BASE_URL


async def _reload_task(test_db, task_id):
    result = await test_db.execute(
        select(ScheduledTask)
        .where(ScheduledTask.id == task_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestPlaceCallAPI:
    """Test POST /api/calls."""

    @pytest.mark.asyncio
    async def test_place_call_dials_lead(self, api_client, fake_telephony, lead):
        response = await api_client.post("/api/calls", json={"lead_id": lead.id})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "initiated"
        assert data["call_id"] == fake_telephony.placed[0]["call_id"]

        placed = fake_telephony.placed[0]
        assert placed["to"] == "+919876543210"
        assert placed["answer_url"] == f"{TEST_BASE_URL}/webhooks/voice/answer"
        assert placed["status_url"] == f"{TEST_BASE_URL}/webhooks/voice/status"
        assert placed["recording_url"] == f"{TEST_BASE_URL}/webhooks/voice/recording"

    @pytest.mark.asyncio
    async def test_phone_and_caller_id_override(self, api_client, fake_telephony, lead):
        response = await api_client.post(
            "/api/calls",
            json={"lead_id": lead.id, "phone_number": "+1 650 253 0000", "from_number": "+16505550100"},
        )

        assert response.status_code == 200
        assert fake_telephony.placed[0]["to"] == "+16502530000"
        assert fake_telephony.placed[0]["from_"] == "+16505550100"

    @pytest.mark.asyncio
    async def test_unknown_lead_is_404(self, api_client, fake_telephony, lead):
        response = await api_client.post("/api/calls", json={"lead_id": 9999})

        assert response.status_code == 404
        assert fake_telephony.placed == []

    @pytest.mark.asyncio
    async def test_invalid_number_is_400(self, api_client, fake_telephony, lead):
        response = await api_client.post("/api/calls", json={"lead_id": lead.id, "phone_number": "12345"})

        assert response.status_code == 400
        assert fake_telephony.placed == []

    @pytest.mark.asyncio
    async def test_provider_error_is_502_and_fails_task(self, api_client, fake_telephony, test_db, make_task, lead):
        task = await make_task()
        task_id, lead_id = task.id, lead.id
        fake_telephony.error = ProviderError("Twilio rejected the call: number unreachable")

        response = await api_client.post("/api/calls", json={"lead_id": lead_id, "task_id": task_id})

        assert response.status_code == 502
        stored = await _reload_task(test_db, task_id)
        assert stored.status == "failed"
        assert stored.result_metadata["call_status"] == "not_placed"
        assert "number unreachable" in stored.result_metadata["error"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500_and_fails_task(self, api_client, fake_telephony, test_db, make_task, lead):
        task = await make_task()
        task_id, lead_id = task.id, lead.id
        fake_telephony.error = RuntimeError("socket reset")

        response = await api_client.post("/api/calls", json={"lead_id": lead_id, "task_id": task_id})

        assert response.status_code == 500
        stored = await _reload_task(test_db, task_id)
        assert stored.status == "failed"
        assert stored.result_metadata["call_status"] == "not_placed"
        assert stored.result_metadata["error"] == "Unexpected error: socket reset"

    @pytest.mark.asyncio
    async def test_missing_credentials_is_503(self, api_client, fake_telephony, lead):
        fake_telephony.error = ConfigError("Twilio credentials are not configured")

        response = await api_client.post("/api/calls", json={"lead_id": lead.id})

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_task_is_claimed(self, api_client, test_db, make_task, lead):
        task = await make_task()

        response = await api_client.post("/api/calls", json={"lead_id": lead.id, "task_id": task.id})

        assert response.status_code == 200
        assert (await _reload_task(test_db, task.id)).status == "in_progress"

    @pytest.mark.asyncio
    async def test_task_not_pending_is_409(self, api_client, fake_telephony, make_task, lead):
        task = await make_task(status="completed")

        response = await api_client.post("/api/calls", json={"lead_id": lead.id, "task_id": task.id})

        assert response.status_code == 409
        assert fake_telephony.placed == []

    @pytest.mark.asyncio
    async def test_unknown_task_is_404(self, api_client, lead):
        response = await api_client.post("/api/calls", json={"lead_id": lead.id, "task_id": 9999})

        assert response.status_code == 404


class TestCallHistoryAPI:
    """Test GET /api/calls and GET /api/calls/{call_id}."""

    @pytest.mark.asyncio
    async def test_get_call_with_transcript(self, api_client, lead):
        call_id = (await api_client.post("/api/calls", json={"lead_id": lead.id})).json()["call_id"]
        await api_client.post("/webhooks/voice/answer", data={"CallSid": call_id})

        response = await api_client.get(f"/api/calls/{call_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["call_id"] == call_id
        assert data["lead_name"] == "Priya Sharma"
        assert data["status"] == "answered"
        assert [h["status"] for h in data["status_history"]] == ["initiated", "answered"]
        assert data["transcript"][0]["speaker"] == "agent"
        assert data["transcript"][0]["position"] == 0

    @pytest.mark.asyncio
    async def test_get_unknown_call_is_404(self, api_client):
        response = await api_client.get("/api/calls/CA-unknown")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_history_for_lead(self, api_client, lead):
        await api_client.post("/api/calls", json={"lead_id": lead.id})
        await api_client.post("/api/calls", json={"lead_id": lead.id})

        response = await api_client.get("/api/calls", params={"lead_id": lead.id})
        other = await api_client.get("/api/calls", params={"lead_id": lead.id + 1})

        assert response.status_code == 200
        assert len(response.json()) == 2
        assert other.json() == []


class TestCronAPI:
    """Test /api/cron/process-scheduled-calls."""

    @pytest.mark.asyncio
    async def test_cron_dispatches_due_tasks(self, api_client, fake_telephony, make_task):
        task = await make_task(scheduled_at=datetime.utcnow() - timedelta(minutes=1))

        response = await api_client.get("/api/cron/process-scheduled-calls")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["results"][0]["task_id"] == task.id
        assert data["results"][0]["success"] is True
        assert data["results"][0]["call_id"] == fake_telephony.placed[0]["call_id"]

    @pytest.mark.asyncio
    async def test_cron_accepts_post(self, api_client):
        response = await api_client.post("/api/cron/process-scheduled-calls")

        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 0, "results": []}

    @pytest.mark.asyncio
    async def test_cron_secret_is_enforced(self, api_client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")

        missing = await api_client.get("/api/cron/process-scheduled-calls")
        wrong = await api_client.get(
            "/api/cron/process-scheduled-calls", headers={"Authorization": "Bearer nope"}
        )
        right = await api_client.get(
            "/api/cron/process-scheduled-calls", headers={"Authorization": "Bearer s3cret"}
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert right.status_code == 200


class TestKnowledgeAPI:
    """Test /api/knowledge endpoints."""

    @pytest.mark.asyncio
    async def test_get_knowledge_text(self, api_client, company):
        response = await api_client.get(f"/api/knowledge/{company.id}")

        assert response.status_code == 200
        knowledge = response.json()["knowledge"]
        assert "Acme Solar installs rooftop solar" in knowledge
        assert "Home Starter" in knowledge
        assert "Free site survey" in knowledge

    @pytest.mark.asyncio
    async def test_unknown_company_is_404(self, api_client, company):
        assert (await api_client.get("/api/knowledge/9999")).status_code == 404
        assert (await api_client.post("/api/knowledge/9999/verify")).status_code == 404

    @pytest.mark.asyncio
    async def test_verify_knowledge(self, api_client, fake_backend, company):
        fake_backend.replies = ["CONFIRMED - I know the Home Starter kit and the free site survey."]

        response = await api_client.post(f"/api/knowledge/{company.id}/verify")

        assert response.status_code == 200
        data = response.json()
        assert data["confirmed"] is True
        assert data["response"].startswith("CONFIRMED")
        assert "Home Starter" in fake_backend.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_verify_knowledge_backend_failure(self, api_client, fake_backend, company):
        fake_backend.error = RuntimeError("connection reset")

        data = (await api_client.post(f"/api/knowledge/{company.id}/verify")).json()

        assert data["confirmed"] is False
        assert "connection reset" in data["error"]


class TestHealthAPI:
    """Test health and root endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "telephony_configured": True,
            "llm_configured": True,
        }

    @pytest.mark.asyncio
    async def test_root(self, api_client):
        response = await api_client.get("/")

        assert response.json()["message"] == "AI Outbound Caller API"
