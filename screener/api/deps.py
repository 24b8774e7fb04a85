from __future__ import annotations

from typing import Any, Callable

from fastapi import Request

from screener.core.credentials import CredentialStore
from screener.mail.gmail import GmailMailbox
from screener.mail.outlook import OutlookMailbox
from screener.mail.types import MailboxSearch, MailProvider
from screener.services.scoring import ScoringClient
from screener.storage.db import CVStore

MailboxFactory = Callable[[MailProvider, Any], MailboxSearch]


def get_cv_store(request: Request) -> CVStore:
    return request.app.state.store


def get_credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_scoring_client(request: Request) -> ScoringClient:
    client = getattr(request.app.state, "scoring_client", None)
    if client is None:
        client = ScoringClient()
        request.app.state.scoring_client = client
    return client


def open_mailbox(provider: MailProvider, granted: Any) -> MailboxSearch:
    if provider == "outlook":
        return OutlookMailbox(granted)
    return GmailMailbox(granted)


def get_mailbox_factory() -> MailboxFactory:
    return open_mailbox
