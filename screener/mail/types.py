from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Protocol, Sequence

MailProvider = Literal["gmail", "outlook"]

UNKNOWN_SENDER = "unknown@example.com"


class MailboxFetchFailed(RuntimeError):
    """A mailbox-level failure (auth, connectivity, timeout) that aborts a harvest."""


class MailboxNotConnected(LookupError):
    pass


@dataclass(frozen=True)
class RawAttachment:
    message_id: str
    attachment_id: str
    filename: str
    mime_type: str
    sender_email: str


class MailboxSearch(Protocol):
    """Read-only view of one user's mailbox.

    ``search_queries`` renders the harvest window and keywords in the
    provider's own query syntax; each query is then passed to ``search``.
    ``list_attachments`` returns every named attachment of a message with the
    message sender filled in; resume filtering is left to the caller.
    Adapters raise ``MailboxFetchFailed`` for transport and auth failures.
    """

    source: str

    def search_queries(self, days_back: int, extra_keywords: Iterable[str] = ()) -> list[str]: ...

    def search(self, query: str, max_results: int) -> Sequence[str]: ...

    def list_attachments(self, message_id: str) -> list[RawAttachment]: ...

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes: ...
