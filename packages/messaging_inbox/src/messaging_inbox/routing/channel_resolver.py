"""
Channel Resolver

Resolves the channel account an inbound webhook is addressed to.
"""

import logging

from sqlalchemy.orm import Session

from messaging_inbox.contracts.event_types import ChannelType
from messaging_inbox.persistence.models import ChannelAccount
from messaging_inbox.persistence.repo import InboxRepository

logger = logging.getLogger(__name__)


class ChannelResolver:
    """
    Resolves channel accounts from webhook identifiers.

    Webhooks carry only the provider-side id (Evolution instance name,
    page id, Instagram account id), so lookup is first match across
    workspaces.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = InboxRepository(db)

    def resolve(self, channel_type: ChannelType, external_id: str) -> ChannelAccount | None:
        """
        Resolve a channel account.

        Args:
            channel_type: Channel family the webhook belongs to
            external_id: Provider-side identifier from the webhook

        Returns:
            Channel account if configured, None otherwise
        """
        account = self.repo.find_channel_account(channel_type.value, external_id)

        if account:
            logger.debug(
                "Resolved channel account",
                extra={
                    "channel_type": channel_type.value,
                    "external_id": external_id,
                    "workspace_id": str(account.workspace_id),
                },
            )
        else:
            logger.warning(
                f"No channel account found for {channel_type.value}:{external_id}",
                extra={"channel_type": channel_type.value, "external_id": external_id},
            )

        return account

    def resolve_evolution_instance(self, instance_name: str) -> ChannelAccount | None:
        """Resolve the channel account of an Evolution instance."""
        return self.resolve(ChannelType.WHATSAPP_EVOLUTION, instance_name)
