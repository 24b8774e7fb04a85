from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, replace
from typing import Any

from screener.mail.types import MailboxNotConnected, MailProvider

logger = logging.getLogger(__name__)

PENDING_STATE_TTL_S = 600

_PROVIDER_LABELS = {"gmail": "Gmail", "outlook": "Outlook"}


@dataclass(frozen=True)
class PendingConnect:
    user_id: str
    provider: MailProvider
    # Gmail: PKCE code verifier. Outlook: the msal auth-code flow dict.
    flow_context: Any
    created_at: float


class CredentialStore:
    """Per-user mailbox credentials for the lifetime of the application.

    Gmail entries hold google-auth ``Credentials``; Outlook entries hold a
    Graph access token. Entries are created when a user completes a consent
    flow and removed on disconnect, account deletion, or application shutdown.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: dict[tuple[str, str], Any] = {}
        self._pending: dict[str, PendingConnect] = {}

    def begin_connect(self, user_id: str, provider: MailProvider = "gmail") -> str:
        state = secrets.token_urlsafe(24)
        with self._lock:
            self._purge_expired_locked()
            self._pending[state] = PendingConnect(
                user_id=user_id,
                provider=provider,
                flow_context=None,
                created_at=time.time(),
            )
        return state

    def attach_flow_context(self, state: str, flow_context: Any) -> None:
        with self._lock:
            pending = self._pending.get(state)
            if pending is not None:
                self._pending[state] = replace(pending, flow_context=flow_context)

    def take_pending(self, state: str, provider: MailProvider = "gmail") -> PendingConnect:
        with self._lock:
            self._purge_expired_locked()
            pending = self._pending.get(state)
            if pending is not None and pending.provider == provider:
                del self._pending[state]
            else:
                pending = None
        if pending is None:
            raise LookupError("Unknown or expired OAuth state.")
        return pending

    def complete_connect(self, user_id: str, credentials: Any, provider: MailProvider = "gmail") -> None:
        with self._lock:
            self._credentials[(user_id, provider)] = credentials
        logger.info("mailbox_connected user=%s provider=%s", user_id, provider)

    def get(self, user_id: str, provider: MailProvider = "gmail") -> Any:
        with self._lock:
            credentials = self._credentials.get((user_id, provider))
        if credentials is None:
            label = _PROVIDER_LABELS.get(provider, provider)
            raise MailboxNotConnected(f"{label} not connected for this user. Please connect {label} first.")
        return credentials

    def is_connected(self, user_id: str, provider: MailProvider = "gmail") -> bool:
        with self._lock:
            return (user_id, provider) in self._credentials

    def disconnect(self, user_id: str, provider: MailProvider | None = None) -> bool:
        """Drop one provider's credentials, or every provider's when ``provider`` is None."""
        with self._lock:
            keys = [key for key in self._credentials if key[0] == user_id and provider in (None, key[1])]
            for key in keys:
                del self._credentials[key]
            for state in [
                s for s, p in self._pending.items() if p.user_id == user_id and provider in (None, p.provider)
            ]:
                del self._pending[state]
        if keys:
            logger.info("mailbox_disconnected user=%s provider=%s", user_id, provider or "all")
        return bool(keys)

    def clear(self) -> None:
        with self._lock:
            self._credentials.clear()
            self._pending.clear()

    def _purge_expired_locked(self) -> None:
        cutoff = time.time() - PENDING_STATE_TTL_S
        for state in [s for s, p in self._pending.items() if p.created_at < cutoff]:
            del self._pending[state]
