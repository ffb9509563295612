"""
Tests for the Meta webhook endpoints and the internal scheduling endpoint.
"""
import hashlib
import hmac
import json

import pytest
from sqlalchemy import select

from helpdesk.core.config import settings
from helpdesk.db.enums import JobType
from helpdesk.db.models import Job


def _sign(body: bytes) -> str:
    digest = hmac.new(settings.META_APP_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def _instagram_body(mid: str = "m_1", account_id: str = "17841400000000") -> bytes:
    payload = {
        "object": "instagram",
        "entry": [
            {
                "id": account_id,
                "time": 1736157600,
                "messaging": [
                    {
                        "sender": {"id": "IGSID1"},
                        "recipient": {"id": account_id},
                        "timestamp": 1736157600000,
                        "message": {"mid": mid, "text": "hello"},
                    }
                ],
            }
        ],
    }
    return json.dumps(payload).encode()


async def _post(client, body: bytes, signature: str | None = "sign"):
    headers = {"Content-Type": "application/json"}
    if signature == "sign":
        headers["X-Hub-Signature-256"] = _sign(body)
    elif signature:
        headers["X-Hub-Signature-256"] = signature
    return await client.post("/webhooks/meta", content=body, headers=headers)


def _webhook_jobs(db) -> list[Job]:
    return list(
        db.scalars(select(Job).where(Job.job_type == JobType.MESSAGING_WEBHOOK.value)).all()
    )


class TestMetaVerification:
    @pytest.mark.asyncio
    async def test_challenge_is_echoed_as_plain_text(self, client):
        response = await client.get(
            "/webhooks/meta",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": "test-verify-token",
                "hub.challenge": "1158201444",
            },
        )

        assert response.status_code == 200
        assert response.text == "1158201444"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_wrong_token_is_rejected(self, client):
        response = await client.get(
            "/webhooks/meta",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )

        assert response.status_code == 403


class TestMetaWebhook:
    @pytest.mark.asyncio
    async def test_message_enqueues_one_job_per_channel(self, client, db, instagram_channel):
        body = _instagram_body()

        response = await _post(client, body)

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "jobs_enqueued": 1, "jobs_skipped": 0}
        (job,) = _webhook_jobs(db)
        assert job.organization_id == instagram_channel.organization_id
        assert job.payload["channel_id"] == str(instagram_channel.id)
        assert job.payload["webhook"] == json.loads(body)
        assert job.idempotency_key == (
            f"messaging_webhook:{instagram_channel.id}:{hashlib.sha256(body).hexdigest()}"
        )

    @pytest.mark.asyncio
    async def test_redelivery_is_skipped(self, client, db, instagram_channel):
        body = _instagram_body()

        await _post(client, body)
        response = await _post(client, body)

        assert response.status_code == 200
        assert response.json()["jobs_enqueued"] == 0
        assert response.json()["jobs_skipped"] == 1
        assert len(_webhook_jobs(db)) == 1

    @pytest.mark.asyncio
    async def test_unknown_account_is_acknowledged(self, client, db, instagram_channel):
        response = await _post(client, _instagram_body(account_id="555"))

        assert response.status_code == 200
        assert response.json()["jobs_enqueued"] == 0
        assert _webhook_jobs(db) == []

    @pytest.mark.asyncio
    async def test_inactive_channel_gets_no_job(self, client, db, instagram_channel):
        instagram_channel.is_active = False
        db.commit()

        response = await _post(client, _instagram_body())

        assert response.json()["jobs_enqueued"] == 0

    @pytest.mark.asyncio
    async def test_missing_signature(self, client, instagram_channel):
        response = await _post(client, _instagram_body(), signature=None)

        assert response.status_code == 403
        assert response.json()["detail"] == "Missing signature"

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client, instagram_channel):
        response = await _post(client, _instagram_body(), signature="sha256=" + "0" * 64)

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid signature"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        response = await _post(client, b"{not json")

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid JSON"

    @pytest.mark.asyncio
    async def test_unknown_object(self, client):
        response = await _post(client, json.dumps({"object": "user", "entry": []}).encode())

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_oversized_payload(self, client):
        body = b"x" * (settings.META_WEBHOOK_MAX_PAYLOAD_BYTES + 1)

        response = await _post(client, body)

        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_test_mode_skips_signature(self, client, db, instagram_channel, monkeypatch):
        monkeypatch.setattr(settings, "META_TEST_MODE", True)

        response = await _post(client, _instagram_body(), signature=None)

        assert response.status_code == 200
        assert response.json()["jobs_enqueued"] == 1


class TestInternalChannelSync:
    @pytest.mark.asyncio
    async def test_requires_configured_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_SECRET", "")

        response = await client.post(
            "/internal/scheduled/channel-sync", headers={"X-Internal-Secret": "anything"}
        )

        assert response.status_code == 501

    @pytest.mark.asyncio
    async def test_rejects_wrong_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_SECRET", "cron-secret")

        response = await client.post(
            "/internal/scheduled/channel-sync", headers={"X-Internal-Secret": "guess"}
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_enqueues_due_channels(self, client, db, email_channel, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_SECRET", "cron-secret")

        response = await client.post(
            "/internal/scheduled/channel-sync", headers={"X-Internal-Secret": "cron-secret"}
        )

        assert response.status_code == 200
        assert response.json() == {"jobs_created": 1}
