"""
Email intake router.

Receives inbound email webhooks from the mail relay and runs each message
through the intake pipeline.

The webhook endpoint is relay-agnostic: it normalises the raw payload via
the inbound_email_adapter service, so swapping from the Cloudflare worker
to Postmark or Resend only requires changing the EMAIL_PROVIDER env var.

Environment variables
---------------------
EMAIL_PROVIDER            Which normaliser to use (default: "cloudflare").
                          Supported values: "cloudflare", "postmark", "resend".
INBOUND_WEBHOOK_SECRET    Shared secret checked in X-Webhook-Secret header.

Endpoints:
  POST /inbound   relay webhook (auth: X-Webhook-Secret)
"""

import logging
import os
import secrets
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException

from authinbox.config import get_settings
from authinbox.db import supabase_admin
from authinbox.models.inbound_email import IntakeOutcome
from authinbox.services.inbound_email_adapter import normalize_webhook
from authinbox.services.intake_pipeline import build_pipeline
from authinbox.services.storage import CodeStore

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _get_webhook_secret() -> str:
    return os.getenv("INBOUND_WEBHOOK_SECRET") or ""


def _verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
) -> None:
    """
    Verify that the inbound webhook request carries the correct shared secret.

    Raises 401 if the secret is missing, unconfigured, or does not match.
    """
    expected = _get_webhook_secret()
    if not expected:
        logger.warning(
            "INBOUND_WEBHOOK_SECRET is not configured; all inbound webhook "
            "requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    if not x_webhook_secret or not secrets.compare_digest(x_webhook_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/inbound")
async def receive_inbound_email(
    payload: dict,
    _: None = Depends(_verify_webhook_secret),
) -> dict:
    """
    Relay-agnostic inbound email webhook receiver.

    Returns 200 for every processed outcome so the relay does not retry,
    except "rejected" (the raw message could not be persisted), which
    answers 422 so the relay can bounce the message.
    """
    provider = os.getenv("EMAIL_PROVIDER", "cloudflare")
    try:
        email = normalize_webhook(payload, provider=provider)
    except ValueError as exc:
        logger.error(f"Webhook normalization failed: {exc}")
        return {"received": True, "processed": False, "reason": "unsupported_provider"}

    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.ai_timeout_seconds) as http:
        pipeline = build_pipeline(settings, CodeStore(supabase_admin), http)
        outcome = await pipeline.run(email)

    if outcome == IntakeOutcome.REJECTED:
        raise HTTPException(
            status_code=422,
            detail=f"Message {email.message_id or '(no id)'} could not be stored",
        )

    return {"received": True, "outcome": outcome.value}
