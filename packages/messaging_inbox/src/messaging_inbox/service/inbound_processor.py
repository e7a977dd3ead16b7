"""
Inbound Event Processor

Applies one admitted canonical event to the workspace model:
1. Resolves the channel account
2. Finds or creates the contact (through the handle index)
3. Finds or creates the conversation and updates its aggregates
4. Reconciles outbound echoes or inserts the message
5. Publishes a live update after commit
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from messaging_inbox.contracts.event_types import Direction, EventType, LiveUpdateType, MessageType, handle_key_for
from messaging_inbox.contracts.events import CanonicalEvent
from messaging_inbox.contracts.payloads import LiveUpdate
from messaging_inbox.live.broadcaster import DEFAULT_EVENT, LiveUpdatePublisher
from messaging_inbox.persistence.models import ChannelAccount, Contact, Conversation, ConversationStatus, Message
from messaging_inbox.persistence.repo import InboxRepository
from messaging_inbox.providers.base import is_local_message_id

logger = logging.getLogger(__name__)


class ChannelAccountNotFound(LookupError):
    """No channel account matches the event's channel type and external id."""


@dataclass
class ProcessResult:
    """What processing did to the workspace model."""

    conversation_id: UUID
    channel_account_id: UUID
    message_id: UUID
    action: str  # created, updated
    conversation_created: bool = False


class InboundEventProcessor:
    """
    Applies canonical events to contacts, conversations and messages.

    Runs once per event admitted by the dedup ledger.
    """

    def __init__(self, db: Session, publisher: LiveUpdatePublisher | None = None):
        self.db = db
        self.repo = InboxRepository(db)
        self.publisher = publisher

    def process(self, workspace_id: UUID, event: CanonicalEvent) -> ProcessResult:
        """
        Process one canonical event.

        Args:
            workspace_id: Workspace that owns the channel account
            event: Normalized event from a provider adapter

        Returns:
            ProcessResult with the affected conversation and message

        Raises:
            ChannelAccountNotFound: If the channel account does not exist
        """
        channel_type = event.channel_type.value
        account = self.repo.get_channel_account(workspace_id, channel_type, event.channel_external_id)
        if account is None:
            raise ChannelAccountNotFound(f"Channel account not found: {channel_type}:{event.channel_external_id}")

        contact = self._resolve_contact(workspace_id, event)
        conversation, created = self._resolve_conversation(workspace_id, account, contact, event)

        if event.event_type in (EventType.COMMENT, EventType.REPLY):
            message_type = MessageType.COMMENT
        else:
            message_type = event.message.message_type

        raw_payload = dict(event.message.raw_payload or {})
        if event.message.media:
            raw_payload["mediaUrl"] = event.message.media.url

        # Synthesized ids never match a sent message
        reconcilable = not created and not is_local_message_id(event.message.external_message_id)
        if event.direction == Direction.OUTBOUND and reconcilable:
            existing = self.repo.find_message(
                workspace_id,
                conversation.id,
                event.message.external_message_id,
                Direction.OUTBOUND.value,
            )
            if existing:
                return self._reconcile_outbound(workspace_id, account, conversation, existing, event, message_type, raw_payload)

        if not created:
            self._record_activity(conversation, event)

        is_inbound = event.direction == Direction.INBOUND
        message = self.repo.create_message(
            workspace_id=workspace_id,
            conversation_id=conversation.id,
            direction=event.direction.value,
            message_type=message_type.value,
            body=event.message.text,
            external_message_id=event.message.external_message_id,
            received_at=event.message.timestamp if is_inbound else None,
            sent_at=None if is_inbound else event.message.timestamp,
            raw_payload=raw_payload,
        )
        self.db.commit()

        logger.info(
            "Stored message",
            extra={
                "workspace_id": str(workspace_id),
                "conversation_id": str(conversation.id),
                "direction": event.direction.value,
                "external_message_id": event.message.external_message_id,
            },
        )

        self._publish(workspace_id, LiveUpdateType.NEW_MESSAGE, account, conversation, message)

        return ProcessResult(
            conversation_id=conversation.id,
            channel_account_id=account.id,
            message_id=message.id,
            action="created",
            conversation_created=created,
        )

    # =========================================================================
    # Contacts
    # =========================================================================

    def _resolve_contact(self, workspace_id: UUID, event: CanonicalEvent) -> Contact:
        """Find the contact owning the event's handle, creating it on first sight."""
        family = handle_key_for(event.channel_type)
        external_id = event.contact_external_id

        contact = self.repo.find_contact_by_handle(workspace_id, family, external_id)
        if contact is None:
            try:
                contact = self.repo.create_contact(
                    workspace_id,
                    primary_name=event.contact_name or external_id,
                    handles={family: external_id},
                )
                self.db.commit()
                logger.info(
                    "Created contact",
                    extra={"workspace_id": str(workspace_id), "family": family, "external_id": external_id},
                )
                return contact
            except IntegrityError:
                # A concurrent event created the same handle first
                self.db.rollback()
                contact = self.repo.find_contact_by_handle(workspace_id, family, external_id)
                if contact is None:
                    raise

        merged = {**(contact.handles or {}), family: external_id}
        if merged != (contact.handles or {}):
            contact.handles = merged
        if event.contact_name and event.contact_name != contact.primary_name:
            contact.primary_name = event.contact_name

        return contact

    # =========================================================================
    # Conversations
    # =========================================================================

    def _resolve_conversation(
        self,
        workspace_id: UUID,
        account: ChannelAccount,
        contact: Contact,
        event: CanonicalEvent,
    ) -> tuple[Conversation, bool]:
        """
        Find or create the conversation for (channel account, contact).

        Returns:
            (conversation, created)
        """
        conversation = self.repo.get_conversation(workspace_id, account.id, contact.id)
        if conversation:
            return conversation, False

        is_inbound = event.direction == Direction.INBOUND
        conversation = Conversation(
            workspace_id=workspace_id,
            channel_account_id=account.id,
            contact_id=contact.id,
            status=ConversationStatus.OPEN.value,
            unread_count=1 if is_inbound else 0,
            last_message_at=event.message.timestamp,
        )

        try:
            # Savepoint: losing the race rolls back this insert only, not the contact update
            with self.db.begin_nested():
                self.db.add(conversation)
        except IntegrityError:
            logger.info(
                "Conversation created concurrently, reusing it",
                extra={"workspace_id": str(workspace_id), "contact_id": str(contact.id)},
            )
            conversation = self.repo.get_conversation(workspace_id, account.id, contact.id)
            if conversation is None:
                raise
            return conversation, False

        return conversation, True

    def _record_activity(self, conversation: Conversation, event: CanonicalEvent) -> None:
        """Bump aggregates of an existing conversation."""
        conversation.last_message_at = event.message.timestamp
        if event.direction == Direction.INBOUND:
            # Evaluated in SQL so concurrent events do not lose increments
            conversation.unread_count = Conversation.unread_count + 1
        if conversation.status == ConversationStatus.CLOSED.value:
            conversation.status = ConversationStatus.OPEN.value

    # =========================================================================
    # Messages
    # =========================================================================

    def _reconcile_outbound(
        self,
        workspace_id: UUID,
        account: ChannelAccount,
        conversation: Conversation,
        message: Message,
        event: CanonicalEvent,
        message_type: MessageType,
        raw_payload: dict[str, Any],
    ) -> ProcessResult:
        """Enrich the row created by the send path with the provider's echo."""
        message.message_type = message_type.value
        if event.message.text:
            message.body = event.message.text
        message.raw_payload = {**(message.raw_payload or {}), **raw_payload}
        self.db.commit()

        logger.info(
            "Reconciled outbound echo",
            extra={
                "workspace_id": str(workspace_id),
                "conversation_id": str(conversation.id),
                "external_message_id": event.message.external_message_id,
            },
        )

        self._publish(workspace_id, LiveUpdateType.MESSAGE_UPDATED, account, conversation, message)

        return ProcessResult(
            conversation_id=conversation.id,
            channel_account_id=account.id,
            message_id=message.id,
            action="updated",
        )

    def _publish(
        self,
        workspace_id: UUID,
        update_type: LiveUpdateType,
        account: ChannelAccount,
        conversation: Conversation,
        message: Message,
    ) -> None:
        if self.publisher is None:
            return
        update = LiveUpdate(
            type=update_type,
            conversation_id=conversation.id,
            channel_account_id=account.id,
            message=message.to_dict(),
        )
        self.publisher.publish(workspace_id, DEFAULT_EVENT, update.to_dict())
