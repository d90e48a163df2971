"""Tests for the HTTP API."""

import hashlib
import hmac
import json

import pytest
from conftest import FakeMessenger, dm_payload
from fastapi.testclient import TestClient

from dmpilot.api.app import create_app
from dmpilot.api.routes.webhooks import verify_webhook_signature
from dmpilot.engine.automation import DEFAULT_EMAIL_PROMPT, DEFAULT_GREETING


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def pipeline(make_pipeline, messenger):
    return make_pipeline(messenger)


@pytest.fixture
def client(settings, pipeline):
    app = create_app(settings=settings, pipeline=pipeline, run_maintenance=False)
    with TestClient(app) as client:
        yield client


def sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestWebhookVerification:
    """Tests for the subscription handshake."""

    def test_challenge_echoed(self, client):
        response = client.get(
            "/webhooks/instagram",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"},
        )

        assert response.status_code == 200
        assert response.text == "1158201444"

    @pytest.mark.parametrize(
        "params",
        [
            {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1"},
            {"hub.mode": "unsubscribe", "hub.verify_token": "verify-me", "hub.challenge": "1"},
            {},
        ],
    )
    def test_rejected(self, client, params):
        assert client.get("/webhooks/instagram", params=params).status_code == 403


class TestWebhookDelivery:
    """Tests for receiving webhook events."""

    def test_events_are_accepted(self, client, pipeline, messenger, account):
        """Test a DM is acknowledged with counts and processed in the background."""
        response = client.post("/webhooks/instagram", json=dm_payload(account.instagram_account_id))

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "accepted": 1, "duplicates": 0, "rejected": 0}

        pipeline.sequencer.shutdown(wait=True)
        assert messenger.texts == [DEFAULT_GREETING, DEFAULT_EMAIL_PROMPT]

    def test_redelivery_is_acknowledged_as_duplicate(self, client, account):
        payload = dm_payload(account.instagram_account_id)

        client.post("/webhooks/instagram", json=payload)
        response = client.post("/webhooks/instagram", json=payload)

        assert response.json()["duplicates"] == 1
        assert response.json()["accepted"] == 0

    def test_unknown_account_is_acknowledged(self, client):
        response = client.post("/webhooks/instagram", json=dm_payload("unknown"))

        assert response.status_code == 200
        assert response.json()["rejected"] == 1

    def test_invalid_json_is_ignored(self, client):
        response = client.post(
            "/webhooks/instagram",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_other_object_is_ignored(self, client):
        response = client.post("/webhooks/instagram", json={"object": "page", "entry": []})

        assert response.json()["status"] == "ignored"


class TestWebhookSignature:
    """Tests for X-Hub-Signature-256 checks."""

    @pytest.fixture
    def signed_client(self, settings, pipeline):
        settings = settings.model_copy(update={"meta_app_secret": "app-secret"})
        app = create_app(settings=settings, pipeline=pipeline, run_maintenance=False)
        with TestClient(app) as client:
            yield client

    def test_verify_webhook_signature(self):
        body = b'{"object": "instagram"}'

        assert verify_webhook_signature(body, sign(body, "s3cret"), "s3cret") is True
        assert verify_webhook_signature(body, sign(body, "other"), "s3cret") is False
        assert verify_webhook_signature(body, None, "s3cret") is False
        assert verify_webhook_signature(body, "md5=abc", "s3cret") is False

    def test_valid_signature_accepted(self, signed_client, account):
        body = json.dumps(dm_payload(account.instagram_account_id)).encode()

        response = signed_client.post(
            "/webhooks/instagram",
            content=body,
            headers={"Content-Type": "application/json", "X-Hub-Signature-256": sign(body, "app-secret")},
        )

        assert response.status_code == 200
        assert response.json()["accepted"] == 1

    def test_missing_signature_rejected(self, signed_client, messenger, account):
        response = signed_client.post("/webhooks/instagram", json=dm_payload(account.instagram_account_id))

        assert response.status_code == 403
        assert messenger.texts == []


class TestDashboardAPI:
    """Tests for the dashboard endpoints."""

    def test_get_conversations(self, client, pipeline, account):
        client.post("/webhooks/instagram", json=dm_payload(account.instagram_account_id))
        pipeline.sequencer.shutdown(wait=True)

        response = client.get("/api/conversations", params={"accountId": account.id})

        assert response.status_code == 200
        (conversation,) = response.json()["conversations"]
        assert conversation["conversationState"] == "collecting_email"
        assert [m["content"] for m in conversation["messages"]] == [
            "hello",
            DEFAULT_GREETING,
            DEFAULT_EMAIL_PROMPT,
        ]
        assert conversation["messages"][1]["deliveryStatus"] == "sent"

    def test_get_conversations_bad_state(self, client):
        response = client.get("/api/conversations", params={"state": "sleeping"})

        assert response.status_code == 400

    def test_get_conversations_limit_bounds(self, client):
        assert client.get("/api/conversations", params={"limit": 0}).status_code == 422
        assert client.get("/api/conversations", params={"limit": 500}).status_code == 422

    def test_get_accounts(self, client, account):
        response = client.get("/api/accounts")

        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == [account.id]
        assert "accessToken" not in response.json()[0]

    def test_save_instagram_config(self, client):
        response = client.post(
            "/api/instagram-config",
            json={"accessToken": "tok", "pageId": "page_1", "instagramAccountId": "ig_1"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert any(a["instagramAccountId"] == "ig_1" for a in client.get("/api/accounts").json())

    def test_save_instagram_config_missing_fields(self, client):
        response = client.post("/api/instagram-config", json={"accessToken": "tok"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required fields: pageId, instagramAccountId"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
