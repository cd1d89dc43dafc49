"""
Supabase-backed storage for inbound mail, extracted codes and gate counters.

Tables:
  raw_mails    (from_addr, to_addr, raw, message_id)  message_id unique
  code_mails   (from_addr, from_org, to_addr, code, topic, message_id, created_at)
  repeat_gate  (key, last_code, consecutive_count, last_updated)  key unique

Every operation wraps client errors in PersistenceError so callers can
treat "the step did not happen" uniformly.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from supabase import Client

from authinbox.models.code_mail import CodeMail, GateRecord


RAW_MAILS_TABLE = "raw_mails"
CODE_MAILS_TABLE = "code_mails"
REPEAT_GATE_TABLE = "repeat_gate"


class PersistenceError(Exception):
    """Raised when a storage operation fails."""
    def __init__(self, message: str, operation: str):
        super().__init__(message)
        self.operation = operation
        self.message = message


class CodeStore:
    """
    Storage operations consumed by the intake pipeline and the repeat gate.

    Args:
        client: Supabase client with service-level access.
    """

    def __init__(self, client: Client):
        self._client = client

    # ------------------------------------------------------------------
    # raw_mails
    # ------------------------------------------------------------------

    def exists_raw_message(self, message_id: str) -> bool:
        try:
            result = (
                self._client.table(RAW_MAILS_TABLE)
                .select("message_id")
                .eq("message_id", message_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(
                f"Failed to look up raw message {message_id!r}: {e}",
                "exists_raw_message",
            ) from e
        return bool(result.data)

    def insert_raw_message(
        self, from_addr: str, to_addr: str, raw: str, message_id: str
    ) -> None:
        row = {
            "from_addr": from_addr,
            "to_addr": to_addr,
            "raw": raw,
            "message_id": message_id,
        }
        try:
            result = self._client.table(RAW_MAILS_TABLE).insert(row).execute()
        except Exception as e:
            raise PersistenceError(
                f"Failed to save message from {from_addr} to {to_addr}: {e}",
                "insert_raw_message",
            ) from e
        if not result.data:
            raise PersistenceError(
                f"raw_mails insert returned no data for {message_id!r}",
                "insert_raw_message",
            )

    # ------------------------------------------------------------------
    # code_mails
    # ------------------------------------------------------------------

    def insert_result(
        self,
        from_addr: str,
        from_org: str,
        to_addr: str,
        code: str,
        topic: str,
        message_id: str,
    ) -> None:
        row = {
            "from_addr": from_addr,
            "from_org": from_org,
            "to_addr": to_addr,
            "code": code,
            "topic": topic,
            "message_id": message_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = self._client.table(CODE_MAILS_TABLE).insert(row).execute()
        except Exception as e:
            raise PersistenceError(
                f"Failed to save extracted code for message from {from_addr} to {to_addr}: {e}",
                "insert_result",
            ) from e
        if not result.data:
            raise PersistenceError(
                f"code_mails insert returned no data for {message_id!r}",
                "insert_result",
            )

    def list_codes(self) -> list[CodeMail]:
        """Return stored codes, most recent first."""
        try:
            result = (
                self._client.table(CODE_MAILS_TABLE)
                .select("from_org, to_addr, topic, code, created_at")
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to list codes: {e}", "list_codes") from e
        return [CodeMail(**row) for row in result.data or []]

    def delete_expired_codes(self, ttl_minutes: int) -> int:
        """
        Delete codes older than ttl_minutes.

        Returns:
            Number of rows deleted.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=ttl_minutes)
        try:
            result = (
                self._client.table(CODE_MAILS_TABLE)
                .delete()
                .lt("created_at", cutoff.isoformat())
                .execute()
            )
        except Exception as e:
            raise PersistenceError(
                f"Failed to delete expired codes: {e}", "delete_expired_codes"
            ) from e
        return len(result.data or [])

    # ------------------------------------------------------------------
    # repeat_gate
    # ------------------------------------------------------------------

    def get_gate_record(self, key: str) -> Optional[GateRecord]:
        try:
            result = (
                self._client.table(REPEAT_GATE_TABLE)
                .select("*")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(
                f"Failed to read gate record for {key!r}: {e}", "get_gate_record"
            ) from e
        if not result.data:
            return None
        return GateRecord(**result.data[0])

    def upsert_gate_record(self, key: str, code: str, count: int) -> None:
        row = {
            "key": key,
            "last_code": code,
            "consecutive_count": count,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._client.table(REPEAT_GATE_TABLE).upsert(row, on_conflict="key").execute()
        except Exception as e:
            raise PersistenceError(
                f"Failed to write gate record for {key!r}: {e}", "upsert_gate_record"
            ) from e

    def delete_gate_record(self, key: str) -> None:
        try:
            self._client.table(REPEAT_GATE_TABLE).delete().eq("key", key).execute()
        except Exception as e:
            raise PersistenceError(
                f"Failed to delete gate record for {key!r}: {e}", "delete_gate_record"
            ) from e
