"""
Extracted-code listing API.

GET /api/codes returns the stored verification codes, newest first. Codes older
than CODE_TTL_MINUTES are purged before every listing.

Access requires the X-Access-Token header to match CODES_ACCESS_TOKEN.
"""

import logging
import os
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from authinbox.config import get_settings
from authinbox.db import supabase_admin
from authinbox.models.code_mail import CodeMail
from authinbox.services.storage import CodeStore, PersistenceError

logger = logging.getLogger(__name__)

router = APIRouter()


def _verify_access_token(x_access_token: Optional[str] = Header(None)) -> None:
    expected = os.getenv("CODES_ACCESS_TOKEN") or ""
    if not expected:
        raise HTTPException(status_code=401, detail="Access token not configured")
    if not x_access_token or not secrets.compare_digest(x_access_token, expected):
        raise HTTPException(status_code=401, detail="Invalid access token")


@router.get("", response_model=List[CodeMail])
async def list_codes(_: None = Depends(_verify_access_token)) -> List[CodeMail]:
    if supabase_admin is None:
        raise HTTPException(
            status_code=503,
            detail="Database client unavailable: SUPABASE_SERVICE_KEY is not configured",
        )

    store = CodeStore(supabase_admin)
    ttl = get_settings().code_ttl_minutes

    # A failed purge still lets the listing through.
    try:
        deleted = store.delete_expired_codes(ttl)
        if deleted:
            logger.info(f"Deleted {deleted} code(s) older than {ttl} minutes")
    except PersistenceError as e:
        logger.warning(f"Expired code cleanup failed: {e}")

    try:
        return store.list_codes()
    except PersistenceError as e:
        logger.error(f"Listing codes failed: {e}")
        raise HTTPException(status_code=503, detail="Failed to list codes")
