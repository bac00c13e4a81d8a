"""
Billing webhook — Stripe ``checkout.session.completed`` updates the
tenant's plan.

The signature is checked with the Stripe SDK before the payload is
trusted.  Once verified, internal failures still answer 200 so Stripe
does not retry an event that can never succeed.
"""

from __future__ import annotations

import json
import logging
from typing import Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.dependencies import get_services
from config.settings import config
from core.services import Services
from database import helpers
from utils.schemas import CheckoutMetadata

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
) -> JSONResponse:
    body = await request.body()

    if not config.stripe_webhook_secret:
        logger.error("Stripe webhook secret is not set.")
        return JSONResponse({"error": "Server configuration error"}, status_code=500)

    try:
        stripe.WebhookSignature.verify_header(
            body.decode("utf-8"),
            stripe_signature,
            config.stripe_webhook_secret,
            config.stripe_signature_tolerance,
        )
        event: Dict = json.loads(body)
        if not isinstance(event, dict):
            raise ValueError("event payload must be a JSON object")
    except (stripe.SignatureVerificationError, ValueError) as exc:
        return JSONResponse({"error": f"Webhook Error: {exc}"}, status_code=400)

    if event.get("type") != "checkout.session.completed":
        return JSONResponse({"received": True})

    session_obj = (event.get("data") or {}).get("object") or {}
    try:
        metadata = CheckoutMetadata.model_validate(session_obj.get("metadata") or {})
    except ValidationError:
        logger.error("Webhook Error: Missing metadata in session %s", session_obj.get("id"))
        return JSONResponse({"error": "Webhook Error: Missing metadata"}, status_code=400)

    try:
        async with services.session_factory() as session:
            async with session.begin():
                await helpers.update_tenant_plan(
                    session,
                    metadata.tenant_id,
                    plan=metadata.plan,
                    stripe_customer_id=session_obj.get("customer"),
                    stripe_subscription_id=session_obj.get("subscription"),
                )
    except Exception:
        logger.exception("Error updating tenant plan for tenant %s", metadata.tenant_id)
        return JSONResponse({"error": "Error processing webhook internally."}, status_code=200)

    logger.info("Updated plan for tenant %s to %s", metadata.tenant_id, metadata.plan)
    return JSONResponse({"received": True})
