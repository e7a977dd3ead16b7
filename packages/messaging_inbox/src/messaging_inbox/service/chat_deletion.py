"""
Chat Deletion Handler

Deletes conversations whose chat was removed on the provider side.

Best-effort: chats that match no stored contact are logged and skipped,
never retried.
"""

import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from messaging_inbox.contracts.event_types import LiveUpdateType, handle_key_for
from messaging_inbox.contracts.events import ChatDeletionEvent
from messaging_inbox.contracts.payloads import LiveUpdate
from messaging_inbox.live.broadcaster import DEFAULT_EVENT, LiveUpdatePublisher
from messaging_inbox.persistence.models import ChannelAccount
from messaging_inbox.persistence.repo import InboxRepository
from messaging_inbox.providers.base import ProviderError
from messaging_inbox.providers.evolution.webhook import bare_contact_id

logger = logging.getLogger(__name__)

ChatExistsCheck = Callable[[str], Awaitable[bool]]


class ChatDeletionHandler:
    """Applies chat deletion events to conversations."""

    def __init__(self, db: Session, publisher: LiveUpdatePublisher | None = None):
        self.db = db
        self.repo = InboxRepository(db)
        self.publisher = publisher

    async def handle(
        self,
        workspace_id: UUID,
        account: ChannelAccount,
        event: ChatDeletionEvent,
        chat_exists: ChatExistsCheck | None = None,
    ) -> list[UUID]:
        """
        Handle a deletion or deletion hint.

        Hints are only acted on for chats the provider reports as gone.
        A failing existence check leaves the chat alone.

        Returns:
            IDs of deleted conversations
        """
        if event.confirmed:
            return self.delete_chats(workspace_id, account, event.chat_ids)

        if chat_exists is None:
            logger.debug("Deletion hint without existence check, ignoring", extra={"chat_ids": event.chat_ids})
            return []

        gone: list[str] = []
        for chat_id in event.chat_ids:
            try:
                if not await chat_exists(chat_id):
                    gone.append(chat_id)
            except ProviderError as e:
                logger.warning(
                    f"Chat existence check failed: {e}",
                    extra={"chat_id": chat_id, "status_code": e.status_code},
                )

        return self.delete_chats(workspace_id, account, gone)

    def delete_chats(self, workspace_id: UUID, account: ChannelAccount, chat_ids: list[str]) -> list[UUID]:
        """
        Delete the channel account's conversations with the given chats.

        Chat ids are matched by their bare phone-number part against
        contact handles of the channel family.
        """
        family = handle_key_for(account.type)
        deleted: list[UUID] = []

        for chat_id in chat_ids:
            external_id = bare_contact_id(chat_id)
            conversations = self.repo.find_conversations_by_handle(workspace_id, account.id, family, external_id)

            if not conversations:
                logger.info(
                    "No conversation matches deleted chat",
                    extra={"workspace_id": str(workspace_id), "chat_id": chat_id},
                )
                continue

            for conversation in conversations:
                removed = self.repo.delete_conversation(conversation)
                deleted.append(conversation.id)
                logger.info(
                    "Deleted conversation for removed chat",
                    extra={
                        "workspace_id": str(workspace_id),
                        "conversation_id": str(conversation.id),
                        "chat_id": chat_id,
                        "messages": removed,
                    },
                )

        if not deleted:
            return deleted

        self.db.commit()

        if self.publisher is not None:
            for conversation_id in deleted:
                update = LiveUpdate(
                    type=LiveUpdateType.CONVERSATION_DELETED,
                    conversation_id=conversation_id,
                    channel_account_id=account.id,
                )
                self.publisher.publish(workspace_id, DEFAULT_EVENT, update.to_dict())

        return deleted
