from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from urllib.parse import quote

import httpx
import msal

from screener.core.config import settings

from .types import UNKNOWN_SENDER, MailboxFetchFailed, RawAttachment

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
SCOPES = ["https://graph.microsoft.com/Mail.Read"]

_FILE_ATTACHMENT_TYPE = "#microsoft.graph.fileAttachment"


def _msal_app() -> msal.ConfidentialClientApplication:
    if not settings.microsoft_client_id or not settings.microsoft_client_secret:
        raise RuntimeError("Microsoft OAuth client credentials are missing.")
    return msal.ConfidentialClientApplication(
        settings.microsoft_client_id,
        client_credential=settings.microsoft_client_secret,
        authority=settings.microsoft_authority,
    )


def begin_auth_flow(state: str) -> dict[str, Any]:
    """Start an authorization-code flow bound to ``state``.

    The returned dict carries ``auth_uri`` for the browser and must be handed
    back unchanged to ``exchange_code`` when the callback arrives.
    """
    return _msal_app().initiate_auth_code_flow(
        SCOPES,
        redirect_uri=settings.outlook_redirect_uri,
        state=state,
    )


def exchange_code(auth_code_flow: dict[str, Any], auth_response: dict[str, str]) -> str:
    """Redeem the callback query parameters for a Graph access token."""
    result = _msal_app().acquire_token_by_auth_code_flow(auth_code_flow, auth_response)
    token = result.get("access_token")
    if not token:
        reason = result.get("error_description") or result.get("error") or "no access token returned"
        raise RuntimeError(f"Outlook token exchange failed: {reason}")
    return token


def _sender_address(message: dict[str, Any]) -> str:
    sender = message.get("from")
    address = sender.get("emailAddress") if isinstance(sender, dict) else None
    value = address.get("address") if isinstance(address, dict) else None
    return value if isinstance(value, str) and value else UNKNOWN_SENDER


class OutlookMailbox:
    """Microsoft Graph mail adapter for one signed-in user.

    Graph does not accept ``$search`` together with ``$filter`` on messages,
    so a harvest issues one filtered listing over the date window and caller
    keywords are not applied.
    """

    source = "Outlook"

    def __init__(
        self,
        access_token: str,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self._access_token = access_token
        self._timeout_s = timeout_s if timeout_s is not None else settings.mail_timeout_s
        self._transport = transport

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"}
        try:
            with httpx.Client(
                base_url=GRAPH_BASE_URL,
                timeout=self._timeout_s,
                headers=headers,
                transport=self._transport,
            ) as client:
                response = client.get(path, params=params)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise MailboxFetchFailed(f"Outlook request failed for {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise MailboxFetchFailed(f"Outlook returned an unexpected payload for {path}")
        return data

    def search_queries(self, days_back: int, extra_keywords: Iterable[str] = ()) -> list[str]:
        since = (datetime.now(timezone.utc) - timedelta(days=days_back)).strftime("%Y-%m-%dT%H:%M:%SZ")
        if any((keyword or "").strip() for keyword in extra_keywords):
            logger.info("outlook_keywords_ignored days=%s", days_back)
        return [f"hasAttachments eq true and receivedDateTime ge {since}"]

    def search(self, query: str, max_results: int) -> list[str]:
        data = self._get_json(
            "/me/messages",
            params={"$filter": query, "$top": max_results, "$select": "id"},
        )
        messages = data.get("value")
        if not isinstance(messages, list):
            return []
        return [m["id"] for m in messages if isinstance(m, dict) and isinstance(m.get("id"), str) and m["id"]]

    def list_attachments(self, message_id: str) -> list[RawAttachment]:
        message = self._get_json(
            f"/me/messages/{quote(message_id, safe='')}",
            params={"$select": "from", "$expand": "attachments($select=id,name,contentType)"},
        )
        sender = _sender_address(message)
        items = message.get("attachments")

        attachments: list[RawAttachment] = []
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict):
                continue
            kind = item.get("@odata.type")
            if kind and kind != _FILE_ATTACHMENT_TYPE:
                continue
            attachment_id = item.get("id")
            name = item.get("name")
            if not isinstance(attachment_id, str) or not attachment_id or not isinstance(name, str) or not name:
                continue
            content_type = item.get("contentType")
            attachments.append(
                RawAttachment(
                    message_id=message_id,
                    attachment_id=attachment_id,
                    filename=name,
                    mime_type=content_type if isinstance(content_type, str) else "",
                    sender_email=sender,
                )
            )
        return attachments

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        data = self._get_json(
            f"/me/messages/{quote(message_id, safe='')}/attachments/{quote(attachment_id, safe='')}"
        )
        content = data.get("contentBytes")
        if not isinstance(content, str) or not content:
            raise MailboxFetchFailed(f"Outlook returned an empty attachment for {message_id}")
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MailboxFetchFailed(f"Outlook attachment for {message_id} is not valid base64") from exc
