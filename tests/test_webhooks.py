"""
Tests for the Stripe webhook: signature verification and plan updates.
"""

import asyncio
import json
import time

import pytest
import stripe
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, patch

from core.services import build_services
from database.models import Tenant
from database.session import build_session_factory
from main import create_app
from fakes import sqlite_engine

SECRET = "whsec_test"


def stripe_header(body: bytes, secret: str = SECRET, timestamp=None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signature = stripe.WebhookSignature._compute_signature(f"{ts}.{body.decode()}", secret)
    return f"t={ts},{stripe.WebhookSignature.EXPECTED_SCHEME}={signature}"


def checkout_event(metadata):
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1", "metadata": metadata}},
    }


@pytest.fixture
def engine(tmp_path):
    return sqlite_engine(tmp_path / "billing.db")


@pytest.fixture
def client(engine):
    services = build_services(build_session_factory(engine), engine=engine, fetchers={}, max_workers=1)
    with TestClient(create_app(services)) as test_client:
        yield test_client


def post_event(client, event, secret=SECRET, signature=None, timestamp=None):
    body = json.dumps(event).encode()
    headers = {"Content-Type": "application/json"}
    headers["Stripe-Signature"] = signature if signature is not None else stripe_header(body, secret, timestamp)
    return client.post("/api/webhooks/stripe", content=body, headers=headers)


def load_tenant(engine, tenant_id):
    async def _load():
        async with build_session_factory(engine)() as session:
            return await session.get(Tenant, tenant_id)

    return asyncio.run(_load())


class TestSignatureVerification:
    def test_tampered_payload(self, client):
        body = json.dumps(checkout_event({"tenantId": "t1", "plan": "pro"})).encode()
        header = stripe_header(body)
        tampered = body.replace(b"pro", b"max")

        resp = client.post("/api/webhooks/stripe", content=tampered, headers={"Stripe-Signature": header})

        assert resp.status_code == 400
        assert "No signatures found" in resp.json()["error"]

    def test_stale_timestamp(self, client):
        resp = post_event(
            client, checkout_event({"tenantId": "t1", "plan": "pro"}), timestamp=int(time.time()) - 3600
        )

        assert resp.status_code == 400
        assert "tolerance" in resp.json()["error"]

    @pytest.mark.parametrize("header", ["garbage", "t=abc,v1=00", "t=1000"])
    def test_malformed_header(self, client, header):
        resp = post_event(client, checkout_event({"tenantId": "t1", "plan": "pro"}), signature=header)

        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Webhook Error:")

    def test_any_v1_signature_may_match(self, client, engine):
        body = json.dumps(checkout_event({"tenantId": "t1", "plan": "pro"})).encode()
        ts, good = stripe_header(body).split(",")

        resp = client.post(
            "/api/webhooks/stripe", content=body, headers={"Stripe-Signature": f"{ts},v1=deadbeef,{good}"}
        )

        assert resp.status_code == 200
        assert load_tenant(engine, "t1").plan == "pro"

    def test_signed_non_object_payload_is_rejected(self, client):
        body = b"[]"

        resp = client.post("/api/webhooks/stripe", content=body, headers={"Stripe-Signature": stripe_header(body)})

        assert resp.status_code == 400


class TestStripeWebhookRoute:
    def test_checkout_updates_plan(self, client, engine):
        resp = post_event(client, checkout_event({"tenantId": "t1", "plan": "pro"}))

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        tenant = load_tenant(engine, "t1")
        assert tenant.plan == "pro"
        assert tenant.stripe_customer_id == "cus_1"
        assert tenant.stripe_subscription_id == "sub_1"

    def test_bad_signature(self, client):
        resp = post_event(client, checkout_event({"tenantId": "t1", "plan": "pro"}), secret="whsec_wrong")

        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Webhook Error:")

    def test_missing_signature_header(self, client):
        resp = post_event(client, checkout_event({"tenantId": "t1", "plan": "pro"}), signature="")

        assert resp.status_code == 400

    def test_missing_metadata(self, client):
        resp = post_event(client, checkout_event({"plan": "pro"}))

        assert resp.status_code == 400
        assert resp.json() == {"error": "Webhook Error: Missing metadata"}

    def test_other_events_are_acknowledged(self, client, engine):
        resp = post_event(client, {"id": "evt_2", "type": "invoice.paid", "data": {"object": {}}})

        assert resp.json() == {"received": True}
        assert load_tenant(engine, "t1") is None

    def test_internal_failure_still_answers_200(self, client):
        with patch("database.helpers.update_tenant_plan", AsyncMock(side_effect=RuntimeError("db down"))):
            resp = post_event(client, checkout_event({"tenantId": "t1", "plan": "pro"}))

        assert resp.status_code == 200
        assert resp.json() == {"error": "Error processing webhook internally."}
