"""
Auth Inbox API
FastAPI application that extracts verification codes from inbound email.
"""

import logging
import os

from fastapi import FastAPI, HTTPException

from authinbox.config import get_settings
from authinbox.db import supabase_admin
from authinbox.routers import codes, email_intake
from authinbox.services.storage import RAW_MAILS_TABLE

# Configure logging to output to console
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Auth Inbox API",
    description="AI-powered verification code extraction from inbound email",
    version="0.1.0",
)

# Include routers
app.include_router(email_intake.router, prefix="/api/email-intake", tags=["email-intake"])
app.include_router(codes.router, prefix="/api/codes", tags=["codes"])


@app.on_event("startup")
async def log_startup_config() -> None:
    """
    Log a summary of the effective configuration.

    Only counts and names are logged; keys and tokens never are.
    """
    settings = get_settings()
    logger.info(
        "Auth Inbox API starting:\n"
        "  Primary:   %s (%d key(s))\n"
        "  Secondary: %s (%s)\n"
        "  Retries:   %d, backoff %.1fs, fallback %s\n"
        "  Bark:      %s (%d token(s))\n"
        "  Storage:   %s",
        settings.primary_model,
        len(settings.primary_api_keys),
        settings.secondary_provider,
        "configured" if settings.secondary_api_key else "not configured",
        settings.ai_max_retries,
        settings.ai_backoff_seconds,
        settings.secondary_fallback_policy.value,
        "enabled" if settings.use_bark else "disabled",
        len(settings.bark_tokens),
        "configured" if supabase_admin is not None else "not configured",
    )
    if not settings.primary_api_keys and not settings.secondary_api_key:
        logger.warning("No AI provider credentials configured; extraction will fail")


@app.get("/")
async def root():
    return {"message": "Auth Inbox API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Executes a lightweight query (one row from raw_mails) to verify that the
    Supabase admin client can reach the database. Returns 503 on failure.
    """
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    try:
        supabase_admin.table(RAW_MAILS_TABLE).select("message_id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
