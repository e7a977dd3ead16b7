"""
Dedup Ledger

One row per admitted webhook delivery, keyed by a unique dedupe key.
The uniqueness-constrained insert is the only concurrency control in the
ingestion path: whoever inserts the key processes the event, every later
delivery of the same key is acknowledged as a duplicate.

A row admitted but never marked (crash mid-processing) stays that way;
retries of it are still rejected as duplicates.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from messaging_inbox.persistence.models import WebhookEvent, utcnow
from messaging_inbox.persistence.repo import InboxRepository

logger = logging.getLogger(__name__)


def generate_dedupe_key(provider: str, external_message_id: str, timestamp: datetime) -> str:
    """Compose provider:external_message_id:timestamp_millis."""
    return f"{provider}:{external_message_id}:{int(timestamp.timestamp() * 1000)}"


@dataclass
class Admission:
    """Result of a ledger admission."""

    admitted: bool
    reason: str | None = None  # "duplicate" when not admitted

    @classmethod
    def duplicate(cls) -> "Admission":
        return cls(admitted=False, reason="duplicate")


class DedupLedger:
    """Admits webhook deliveries at most once."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = InboxRepository(db)

    def admit(
        self,
        workspace_id: UUID,
        provider: str,
        dedupe_key: str,
        raw_payload: dict[str, Any] | None = None,
    ) -> Admission:
        """
        Insert a ledger row for a delivery.

        The row is committed on its own so concurrent deliveries of the same
        key see it immediately.

        Raises:
            IntegrityError: For constraint failures other than a repeated key
        """
        event = WebhookEvent(
            workspace_id=workspace_id,
            provider=provider,
            dedupe_key=dedupe_key,
            raw_payload=raw_payload,
        )
        self.db.add(event)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self.repo.get_webhook_event(dedupe_key) is not None:
                logger.info("Duplicate webhook delivery", extra={"dedupe_key": dedupe_key, "provider": provider})
                return Admission.duplicate()
            raise

        return Admission(admitted=True)

    def mark_processed(self, dedupe_key: str) -> None:
        """Record successful processing."""
        self._finish(dedupe_key, error=None)

    def mark_failed(self, dedupe_key: str, error: str) -> None:
        """Record failed processing."""
        self._finish(dedupe_key, error=error[:4000])

    def _finish(self, dedupe_key: str, error: str | None) -> None:
        event = self.repo.get_webhook_event(dedupe_key)
        if event is None:
            logger.warning("Ledger entry not found when marking", extra={"dedupe_key": dedupe_key})
            return

        event.processed_at = utcnow()
        event.error = error
        self.db.commit()
