"""Channel and provider enums."""

from enum import Enum


class ChannelKind(str, Enum):
    """Which family of channel a ticket or sync log belongs to."""

    EMAIL = "email"
    MESSAGING = "messaging"


class EmailProvider(str, Enum):
    """Email channel providers."""

    GMAIL = "gmail"
    MICROSOFT365 = "microsoft365"
    MIME = "mime"  # raw RFC 822 source (IMAP relay, piped mail)


class MessagingProvider(str, Enum):
    """Social messaging providers."""

    INSTAGRAM = "instagram"
    FACEBOOK_MESSENGER = "facebook_messenger"
    WHATSAPP = "whatsapp"
    WECHAT = "wechat"

    @property
    def label(self) -> str:
        return _MESSAGING_LABELS[self]

    @property
    def contact_field(self) -> str:
        """Contact column holding this provider's platform user id."""
        return _MESSAGING_CONTACT_FIELDS[self]


_MESSAGING_LABELS = {
    MessagingProvider.INSTAGRAM: "Instagram DM",
    MessagingProvider.FACEBOOK_MESSENGER: "Facebook Messenger",
    MessagingProvider.WHATSAPP: "WhatsApp",
    MessagingProvider.WECHAT: "WeChat",
}

_MESSAGING_CONTACT_FIELDS = {
    MessagingProvider.INSTAGRAM: "instagram_id",
    MessagingProvider.FACEBOOK_MESSENGER: "facebook_id",
    MessagingProvider.WHATSAPP: "whatsapp_phone",
    MessagingProvider.WECHAT: "wechat_id",
}


class PostImportAction(str, Enum):
    """What happens to the source email after a successful import."""

    NOTHING = "nothing"
    ARCHIVE = "archive"
    MOVE_TO_FOLDER = "move_to_folder"
    DELETE = "delete"


class SyncLogStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
