#!/usr/bin/env python3
"""
Dev helper: send a test inbound-email webhook to the local Auth Inbox backend.

Builds a small RFC 822 message carrying a verification code, wraps it in the
payload format of the chosen relay and POST-s it to /api/email-intake/inbound.

Usage
-----
# Basic: Cloudflare worker payload with a login code, targeting localhost:8000
python scripts/send_test_email.py

# A password-reset mail (send it three times to get it past the repeat gate)
python scripts/send_test_email.py --kind reset --code 482913

# Use Postmark payload format instead
python scripts/send_test_email.py --relay postmark

# Re-send with the same Message-ID to exercise dedupe
python scripts/send_test_email.py --message-id "<fixed@example.com>"

Environment / .env
------------------
INBOUND_WEBHOOK_SECRET   Shared webhook secret (required).
EMAIL_PROVIDER           Relay format to use (default: cloudflare).
                         Overridden by --relay flag.
"""

import argparse
import json
import os
import sys
import textwrap
import uuid
from email.utils import formatdate
from pathlib import Path

import httpx
from dotenv import load_dotenv


_BODIES = {
    "login": "Use {code} to sign in to your account. This code expires in 10 minutes.",
    "reset": "We received a request to reset your password. Your reset code is {code}.",
    "none": "Our spring sale starts today! Up to 50% off everything.",
}


# ---------------------------------------------------------------------------
# Raw message
# ---------------------------------------------------------------------------

def _build_raw_email(from_email: str, to_address: str, subject: str, body: str, message_id: str) -> str:
    return "\r\n".join([
        f"Message-ID: {message_id}",
        f"Date: {formatdate(localtime=True)}",
        f"From: Example Service <{from_email}>",
        f"To: {to_address}",
        f"Subject: {subject}",
        "Content-Type: text/plain; charset=utf-8",
        "",
        body,
        "",
    ])


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def _build_cloudflare_payload(from_email, to_address, subject, raw, text, message_id) -> dict:
    """Payload as forwarded by the Cloudflare Email Worker."""
    return {"from": from_email, "to": to_address, "raw": raw, "message_id": message_id}


def _build_postmark_payload(from_email, to_address, subject, raw, text, message_id) -> dict:
    """Postmark inbound format (PascalCase keys)."""
    return {
        "From": from_email,
        "To": to_address,
        "Subject": subject,
        "TextBody": text,
        "RawEmail": raw,
        "Headers": [{"Name": "Message-ID", "Value": message_id}],
    }


def _build_resend_payload(from_email, to_address, subject, raw, text, message_id) -> dict:
    """Resend inbound format (snake_case keys)."""
    return {
        "from": from_email,
        "to": to_address,
        "subject": subject,
        "text": text,
        "raw": raw,
        "message_id": message_id,
    }


_PAYLOAD_BUILDERS = {
    "cloudflare": _build_cloudflare_payload,
    "postmark": _build_postmark_payload,
    "resend": _build_resend_payload,
}


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    # Locate project root (scripts/ lives one level below the root)
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_email.py",
        description=textwrap.dedent("""\
            Send a test inbound-email webhook to the Auth Inbox backend.

            Reads INBOUND_WEBHOOK_SECRET from the environment or a .env file
            in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--url", default="http://localhost:8000",
                        help="Backend base URL (default: http://localhost:8000)")
    parser.add_argument("--relay", default=os.getenv("EMAIL_PROVIDER", "cloudflare"),
                        choices=list(_PAYLOAD_BUILDERS),
                        help="Webhook payload format to use (default: cloudflare)")
    parser.add_argument("--kind", default="login", choices=list(_BODIES),
                        help="Kind of mail: login code, password reset, or no code")
    parser.add_argument("--code", default="04 74 22", help='Code to embed (default: "04 74 22")')
    parser.add_argument("--from", dest="from_email", default="no-reply@example.com",
                        help="Sender email address (default: no-reply@example.com)")
    parser.add_argument("--to", dest="to_address", default="me@inbox.example.com",
                        help="Recipient address (default: me@inbox.example.com)")
    parser.add_argument("--message-id", default=None,
                        help="Message-ID to use (default: a fresh one per run)")
    parser.add_argument("--secret", default=None,
                        help="Override the webhook secret (default: INBOUND_WEBHOOK_SECRET)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the payload JSON without sending it.")

    args = parser.parse_args()

    secret = args.secret or os.getenv("INBOUND_WEBHOOK_SECRET", "")
    if not secret and not args.dry_run:
        print(
            "ERROR: No webhook secret found.\n"
            "Set INBOUND_WEBHOOK_SECRET in your environment or .env file, "
            "or pass --secret.",
            file=sys.stderr,
        )
        return 1

    message_id = args.message_id or f"<{uuid.uuid4()}@example.com>"
    subject = {"login": "Your sign-in code", "reset": "Reset your password",
               "none": "Spring sale"}[args.kind]
    text = _BODIES[args.kind].format(code=args.code)
    raw = _build_raw_email(args.from_email, args.to_address, subject, text, message_id)

    payload = _PAYLOAD_BUILDERS[args.relay](
        args.from_email, args.to_address, subject, raw, text, message_id
    )
    endpoint = f"{args.url.rstrip('/')}/api/email-intake/inbound"

    print(f"Relay     : {args.relay}")
    print(f"Endpoint  : {endpoint}")
    print(f"To        : {args.to_address}")
    print(f"Message-ID: {message_id}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    try:
        response = httpx.post(
            endpoint,
            json=payload,
            headers={"X-Webhook-Secret": secret},
            timeout=120,
        )
    except httpx.HTTPError as e:
        print(f"\n[FAIL] {e}", file=sys.stderr)
        return 1

    symbol = "OK" if response.status_code == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
