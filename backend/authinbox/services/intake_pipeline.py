"""
Email intake pipeline.

One pass per inbound email:

  1. dedupe on message_id           -> duplicate
  2. persist the raw message        -> rejected on failure
  3. extract the code with the AI   -> extraction_failed / no_code
  4. repeat gate (password resets)  -> suppressed
  5. persist the extracted code     -> store_failed on failure
  6. notify (best effort)           -> stored

run() never raises; every pass ends in exactly one IntakeOutcome and one
log line carrying the elapsed processing time.
"""

import logging
import time
import uuid
from typing import Optional

import httpx

from authinbox.config import Settings
from authinbox.models.extraction import GateDecision
from authinbox.models.inbound_email import InboundEmail, IntakeOutcome
from authinbox.services.ai_dispatch import NoCredentials, ProviderOrchestrator
from authinbox.services.ai_providers import CredentialPool, build_provider_client
from authinbox.services.code_extractor import (
    CodeExtractor,
    ExtractionFailed,
    build_extraction_prompt,
)
from authinbox.services.notifier import BarkNotifier
from authinbox.services.repeat_gate import RepeatGate
from authinbox.services.storage import CodeStore, PersistenceError

logger = logging.getLogger(__name__)


class IntakePipeline:
    """
    Runs an InboundEmail through dedupe, extraction, gating, storage and
    notification.

    Args:
        store: Persistence for raw mails and extracted codes.
        extractor: AI extraction with retries.
        gate: Repeat gate for password-reset codes.
        notifier: Optional fan-out notifier; None disables notifications.
    """

    def __init__(
        self,
        store: CodeStore,
        extractor: CodeExtractor,
        gate: RepeatGate,
        notifier: Optional[BarkNotifier] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.gate = gate
        self.notifier = notifier

    async def run(self, email: InboundEmail) -> IntakeOutcome:
        started = time.monotonic()
        try:
            outcome = await self._process(email)
        except Exception as e:
            logger.exception(f"Unexpected error processing email to {email.recipient_email}: {e}")
            outcome = IntakeOutcome.FAILED

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Email {email.message_id} from {email.sender_email} to {email.recipient_email}: "
            f"{outcome.value} in {elapsed_ms:.0f}ms"
        )
        return outcome

    async def _process(self, email: InboundEmail) -> IntakeOutcome:
        if not email.message_id:
            email = email.model_copy(update={"message_id": f"generated-{uuid.uuid4()}"})
            logger.warning(
                f"Email from {email.sender_email} has no Message-ID; using {email.message_id}"
            )
        message_id = email.message_id

        # Step 1: dedupe (a failed lookup falls through to the insert)
        try:
            if self.store.exists_raw_message(message_id):
                logger.info(f"Message {message_id} already processed, skipping")
                return IntakeOutcome.DUPLICATE
        except PersistenceError as e:
            logger.error(f"Duplicate check failed for {message_id}: {e}")

        # Step 2: persist raw message
        try:
            self.store.insert_raw_message(
                email.sender_email, email.recipient_email, email.raw, message_id
            )
        except PersistenceError as e:
            logger.error(f"Rejecting message {message_id}: {e}")
            return IntakeOutcome.REJECTED

        # Step 3: extraction
        prompt = build_extraction_prompt(email.raw)
        try:
            result = await self.extractor.extract(prompt)
        except NoCredentials as e:
            logger.error(f"Cannot extract code for {message_id}: {e}")
            return IntakeOutcome.EXTRACTION_FAILED
        except ExtractionFailed as e:
            logger.error(f"Extraction failed for {message_id}: {e}")
            return IntakeOutcome.EXTRACTION_FAILED

        if not result.code_exists:
            logger.info(f"No verification code in message {message_id}")
            return IntakeOutcome.NO_CODE

        # Step 4: repeat gate
        decision = self.gate.evaluate(result.classification, email.recipient_email, result.code)
        if decision == GateDecision.SUPPRESS:
            logger.info(f"Code for {email.recipient_email} suppressed by repeat gate")
            return IntakeOutcome.SUPPRESSED

        # Step 5: persist extracted code
        try:
            self.store.insert_result(
                email.sender_email,
                result.sender_address,
                email.recipient_email,
                result.code,
                result.topic,
                message_id,
            )
        except PersistenceError as e:
            logger.error(f"Failed to store code for {message_id}: {e}")
            return IntakeOutcome.STORE_FAILED

        # Step 6: notify (failures never change the outcome)
        if self.notifier is not None:
            delivered = await self.notifier.notify_all(result.sender_address, result.code)
            failed = sum(1 for ok in delivered.values() if not ok)
            if failed:
                logger.warning(f"{failed}/{len(delivered)} notification(s) failed for {message_id}")

        return IntakeOutcome.STORED


def build_pipeline(settings: Settings, store: CodeStore, http: httpx.AsyncClient) -> IntakePipeline:
    """Wire an IntakePipeline from Settings, sharing one HTTP client."""
    pool = CredentialPool.from_settings(settings)
    client = build_provider_client(settings, http)
    extractor = CodeExtractor(
        ProviderOrchestrator(pool, client),
        client,
        pool,
        max_retries=settings.ai_max_retries,
        backoff_seconds=settings.ai_backoff_seconds,
        fallback_policy=settings.secondary_fallback_policy,
    )
    gate = RepeatGate(
        store,
        threshold=settings.repeat_gate_threshold,
        ttl_minutes=settings.repeat_gate_ttl_minutes,
    )
    notifier = (
        BarkNotifier(http, settings.bark_url, settings.bark_tokens)
        if settings.use_bark
        else None
    )
    return IntakePipeline(store, extractor, gate, notifier)
