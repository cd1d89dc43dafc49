"""
Pydantic models for persisted rows.

Models:
  CodeMail    row from the code_mails table (extracted codes)
  GateRecord  row from the repeat_gate table (password-reset counters)
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class CodeMail(BaseModel):
    """Extracted verification code as listed by GET /api/codes."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    from_org: str
    to_addr: str
    topic: str
    code: str
    created_at: str


class GateRecord(BaseModel):
    """
    Consecutive-sighting counter for one recipient.

    last_updated is None only for rows written by hand; such rows never
    expire.
    """
    model_config = {"extra": "ignore"}

    key: str
    last_code: str
    consecutive_count: int
    last_updated: Optional[datetime] = None
