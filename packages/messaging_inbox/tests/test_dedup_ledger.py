"""
Tests for the webhook dedup ledger.
"""

from datetime import datetime, timezone

from messaging_inbox.persistence.ledger import DedupLedger, generate_dedupe_key


class TestDedupeKey:
    def test_key_format(self):
        """provider:external_id:millis."""
        timestamp = datetime(2023, 11, 14, 22, 13, 20, 500000, tzinfo=timezone.utc)

        assert generate_dedupe_key("evolution", "3EB0C0FFEE", timestamp) == "evolution:3EB0C0FFEE:1700000000500"


class TestAdmission:
    """At-most-once admission."""

    def test_first_delivery_admitted(self, db, repo, workspace):
        ledger = DedupLedger(db)

        admission = ledger.admit(workspace.id, "evolution", "evolution:M1:1", {"event": "messages.upsert"})

        assert admission.admitted is True
        stored = repo.get_webhook_event("evolution:M1:1")
        assert stored.provider == "evolution"
        assert stored.raw_payload == {"event": "messages.upsert"}
        assert stored.processed_at is None

    def test_redelivery_is_duplicate(self, db, repo, workspace):
        """The same key is admitted once; the original row is untouched."""
        ledger = DedupLedger(db)
        ledger.admit(workspace.id, "evolution", "evolution:M1:1", {"n": 1})

        admission = ledger.admit(workspace.id, "evolution", "evolution:M1:1", {"n": 2})

        assert admission.admitted is False
        assert admission.reason == "duplicate"
        assert repo.get_webhook_event("evolution:M1:1").raw_payload == {"n": 1}

    def test_unmarked_entry_still_blocks(self, db, workspace):
        """A delivery that never finished processing is not retried."""
        ledger = DedupLedger(db)
        ledger.admit(workspace.id, "meta", "meta:mid:1")

        assert ledger.admit(workspace.id, "meta", "meta:mid:1").admitted is False


class TestMarking:
    """Processing outcome recorded on the entry."""

    def test_mark_processed(self, db, repo, workspace):
        ledger = DedupLedger(db)
        ledger.admit(workspace.id, "meta", "meta:mid:1")

        ledger.mark_processed("meta:mid:1")

        stored = repo.get_webhook_event("meta:mid:1")
        assert stored.processed_at is not None
        assert stored.error is None

    def test_mark_failed(self, db, repo, workspace):
        """Failures keep the error text, truncated."""
        ledger = DedupLedger(db)
        ledger.admit(workspace.id, "meta", "meta:mid:1")

        ledger.mark_failed("meta:mid:1", "boom" * 2000)

        stored = repo.get_webhook_event("meta:mid:1")
        assert stored.processed_at is not None
        assert len(stored.error) == 4000
        assert repo.list_failed_webhook_events(workspace.id) == [stored]

    def test_mark_unknown_key(self, db):
        """Marking a missing entry is a no-op."""
        DedupLedger(db).mark_processed("meta:missing:1")
