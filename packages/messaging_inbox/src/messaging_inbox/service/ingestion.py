"""
Webhook Ingestion

Admit -> process -> mark for one canonical event. Shared by the
webhook endpoints of every provider.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_inbox.contracts.events import CanonicalEvent
from messaging_inbox.live.broadcaster import LiveUpdatePublisher
from messaging_inbox.persistence.ledger import DedupLedger, generate_dedupe_key
from messaging_inbox.service.inbound_processor import InboundEventProcessor, ProcessResult

logger = logging.getLogger(__name__)


@dataclass
class IngestOutcome:
    """How one event was handled."""

    status: str  # duplicate, processed, failed
    dedupe_key: str
    result: ProcessResult | None = None
    error: str | None = None


class WebhookIngestor:
    """Runs admitted events through the processor and settles the ledger row."""

    def __init__(self, db: Session, publisher: LiveUpdatePublisher | None = None):
        self.db = db
        self.ledger = DedupLedger(db)
        self.processor = InboundEventProcessor(db, publisher)

    def ingest(self, workspace_id: UUID, provider: str, event: CanonicalEvent) -> IngestOutcome:
        """
        Ingest one event.

        Processing failures are recorded on the ledger row and returned,
        never raised, so one bad event cannot fail a whole delivery.
        """
        dedupe_key = generate_dedupe_key(provider, event.message.external_message_id, event.message.timestamp)

        admission = self.ledger.admit(workspace_id, provider, dedupe_key, event.message.raw_payload)
        if not admission.admitted:
            return IngestOutcome(status="duplicate", dedupe_key=dedupe_key)

        try:
            result = self.processor.process(workspace_id, event)
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to process {provider} event: {e}",
                extra={"workspace_id": str(workspace_id), "dedupe_key": dedupe_key},
                exc_info=True,
            )
            self.ledger.mark_failed(dedupe_key, str(e) or type(e).__name__)
            return IngestOutcome(status="failed", dedupe_key=dedupe_key, error=str(e))

        self.ledger.mark_processed(dedupe_key)
        return IngestOutcome(status="processed", dedupe_key=dedupe_key, result=result)
