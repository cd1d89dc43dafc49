"""
Provider-agnostic inbound email model.

These models represent a normalized inbound email after provider-specific
fields have been stripped away. The pipeline works exclusively with these
models; only the adapter layer knows about the relay formats.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class InboundEmail(BaseModel):
    """
    Normalized inbound email.

    raw is the full RFC 822 source as received; message_id is the
    Message-ID assigned upstream and serves as the idempotency key.
    """

    sender_email: str
    recipient_email: str
    raw: str
    message_id: Optional[str] = None
    subject: Optional[str] = None


class IntakeOutcome(str, Enum):
    """Terminal state of one pass through the intake pipeline."""
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    EXTRACTION_FAILED = "extraction_failed"
    NO_CODE = "no_code"
    SUPPRESSED = "suppressed"
    STORE_FAILED = "store_failed"
    STORED = "stored"
    FAILED = "failed"
