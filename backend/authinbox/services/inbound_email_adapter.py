"""
Inbound email adapter service.

Normalizes relay-specific inbound webhook payloads into a single
provider-agnostic InboundEmail model.

Supported relays:
  - cloudflare  (default; an Email Worker that forwards the raw message)
  - postmark
  - resend

Adding a new relay:
  1. Write a normalize_<relay>(payload: dict) -> InboundEmail function.
  2. Register it in _NORMALIZERS.
  3. Set EMAIL_PROVIDER=<relay> in the environment.

Payload field assumptions
-------------------------
cloudflare   from, to, raw, message_id (forwarded verbatim from the Email
             Worker's message.from / message.to / message.raw /
             headers["Message-ID"])
postmark     From, To, Subject, RawEmail (only when "include raw email
             content" is enabled; otherwise headers + TextBody are used),
             Headers[{Name, Value}] carrying Message-ID, MessageID fallback
resend       from, to, subject, raw (text fallback), message_id
             (email_id fallback)

If a relay changes its schema, only this file needs updating.
"""

import os
import re
from typing import Callable, Optional

from authinbox.models.inbound_email import InboundEmail


def _extract_address(value) -> str:
    """
    Return the bare address from "Name <addr@host>" or a plain address.

    Resend may send "to" as a list of addresses; the first entry is used.
    """
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    if not value:
        return ""
    value = str(value)
    match = re.search(r"<([^>]+)>", value)
    addr = match.group(1) if match else value
    # Some relays pass a comma-separated list; the first entry is ours
    return addr.split(",")[0].strip()


def _first(payload: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value:
            return str(value)
    return None


# ---------------------------------------------------------------------------
# Cloudflare Email Worker relay
# ---------------------------------------------------------------------------

def normalize_cloudflare(payload: dict) -> InboundEmail:
    """
    Convert a Cloudflare Email Worker relay payload to InboundEmail.

    The worker forwards the envelope sender/recipient and the raw message.
    """
    return InboundEmail(
        sender_email=_extract_address(payload.get("from", "")),
        recipient_email=_extract_address(payload.get("to", "")),
        raw=payload.get("raw") or "",
        message_id=_first(payload, "message_id", "messageId"),
        subject=payload.get("subject"),
    )


# ---------------------------------------------------------------------------
# Postmark normalizer
# ---------------------------------------------------------------------------

def _postmark_header(payload: dict, name: str) -> Optional[str]:
    for header in payload.get("Headers") or []:
        if (header.get("Name") or "").lower() == name.lower():
            return header.get("Value")
    return None


def normalize_postmark(payload: dict) -> InboundEmail:
    """
    Convert a Postmark inbound webhook payload to InboundEmail.

    Postmark uses PascalCase keys. When RawEmail is absent the raw text is
    rebuilt from the header list and TextBody, which is enough for code
    extraction.
    """
    raw = payload.get("RawEmail")
    if not raw:
        header_lines = [
            f"{h.get('Name')}: {h.get('Value')}" for h in payload.get("Headers") or []
        ]
        header_lines += [
            f"From: {payload.get('From', '')}",
            f"To: {payload.get('To', '')}",
            f"Subject: {payload.get('Subject') or ''}",
        ]
        raw = "\n".join(header_lines) + "\n\n" + (payload.get("TextBody") or "")

    return InboundEmail(
        sender_email=_extract_address(payload.get("From", "")),
        recipient_email=_extract_address(payload.get("OriginalRecipient") or payload.get("To", "")),
        raw=raw,
        message_id=_postmark_header(payload, "Message-ID") or payload.get("MessageID"),
        subject=payload.get("Subject"),
    )


# ---------------------------------------------------------------------------
# Resend normalizer
# ---------------------------------------------------------------------------

def normalize_resend(payload: dict) -> InboundEmail:
    """
    Convert a Resend inbound webhook payload to InboundEmail.

    Resend uses snake_case keys.
    """
    return InboundEmail(
        sender_email=_extract_address(payload.get("from", "")),
        recipient_email=_extract_address(payload.get("to", "")),
        raw=_first(payload, "raw", "text") or "",
        message_id=_first(payload, "message_id", "email_id"),
        subject=payload.get("subject"),
    )


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[str, Callable[[dict], InboundEmail]] = {
    "cloudflare": normalize_cloudflare,
    "postmark": normalize_postmark,
    "resend": normalize_resend,
}


def normalize_webhook(payload: dict, provider: str | None = None) -> InboundEmail:
    """
    Route to the correct normalizer based on the provider argument or the
    EMAIL_PROVIDER environment variable.

    Priority:
      1. provider argument (explicit, used in tests and the webhook endpoint)
      2. EMAIL_PROVIDER env var
      3. Default: "cloudflare"

    Raises ValueError for unknown provider names.
    """
    resolved = provider or os.getenv("EMAIL_PROVIDER", "cloudflare")
    resolved = resolved.lower().strip()

    normalizer = _NORMALIZERS.get(resolved)
    if normalizer is None:
        raise ValueError(
            f"Unknown email provider {resolved!r}. "
            f"Supported providers: {sorted(_NORMALIZERS)}"
        )

    return normalizer(payload)
