from __future__ import annotations

import base64
import logging
import re
import threading
from typing import Any, Iterable, Sequence

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from screener.core.config import settings

from .types import UNKNOWN_SENDER, MailboxFetchFailed, RawAttachment

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "openid",
]

BASE_KEYWORDS = ("resume", "cv", "curriculum vitae", "application", "job application")

_TRANSPORT_ERRORS = (HttpError, GoogleAuthError, httplib2.HttpLib2Error, OSError)
_ANGLE_ADDRESS_RE = re.compile(r"<(.+?)>")


def _client_config() -> dict[str, Any]:
    if not settings.google_client_id or not settings.google_client_secret:
        raise RuntimeError("Google OAuth client credentials are missing.")
    return {
        "web": {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": [settings.gmail_redirect_uri],
        }
    }


def build_oauth_flow(code_verifier: str | None = None) -> Flow:
    return Flow.from_client_config(
        _client_config(),
        scopes=SCOPES,
        redirect_uri=settings.gmail_redirect_uri,
        code_verifier=code_verifier,
    )


def authorization_url(state: str) -> tuple[str, str | None]:
    """Consent URL for ``state`` plus the PKCE verifier needed at exchange time."""
    flow = build_oauth_flow()
    url, _ = flow.authorization_url(
        access_type="offline",
        prompt="consent",
        state=state,
    )
    return url, flow.code_verifier


def exchange_code(code: str, code_verifier: str | None = None) -> Credentials:
    flow = build_oauth_flow(code_verifier=code_verifier)
    flow.fetch_token(code=code)
    return flow.credentials


def _quote(keyword: str) -> str:
    return f'"{keyword}"' if " " in keyword else keyword


def build_search_queries(days_back: int, extra_keywords: Iterable[str] = ()) -> list[str]:
    """Overlapping Gmail queries for resume mail received in the last ``days_back`` days."""
    date_filter = f"newer_than:{days_back}d"
    queries = [
        f"has:attachment {date_filter}",
        f'(resume OR cv OR "curriculum vitae") {date_filter}',
        f'(application OR "job application" OR "job posting") {date_filter}',
        f"filename:(.pdf OR .doc OR .docx) {date_filter}",
        f"subject:(resume OR cv OR application) {date_filter}",
        f"has:attachment (resume OR cv) {date_filter}",
        f"has:attachment (application OR intern OR position) {date_filter}",
    ]

    seen = {keyword.lower() for keyword in BASE_KEYWORDS}
    for raw in extra_keywords:
        keyword = raw.strip().replace('"', "")
        if not keyword or keyword.lower() in seen:
            continue
        seen.add(keyword.lower())
        queries.append(f"has:attachment {_quote(keyword)} {date_filter}")
    return queries


def sender_email(headers: Sequence[Any]) -> str:
    value = next(
        (
            h.get("value")
            for h in headers
            if isinstance(h, dict) and str(h.get("name") or "").lower() == "from"
        ),
        None,
    )
    if not value or not isinstance(value, str):
        return UNKNOWN_SENDER
    match = _ANGLE_ADDRESS_RE.search(value)
    return match.group(1) if match else value


def find_attachment_parts(parts: Sequence[Any], max_depth: int) -> list[dict[str, Any]]:
    """Depth-first walk of a part tree collecting parts with a filename and attachment id.

    Nesting below ``max_depth`` levels is not followed. Parts that are not
    shaped like Gmail message parts are skipped.
    """
    found: list[dict[str, Any]] = []
    stack = [(part, 0) for part in reversed(parts or [])]
    while stack:
        part, depth = stack.pop()
        if not isinstance(part, dict):
            continue
        filename = part.get("filename")
        body = part.get("body")
        if (
            isinstance(filename, str)
            and filename
            and isinstance(body, dict)
            and isinstance(body.get("attachmentId"), str)
            and body["attachmentId"]
        ):
            found.append(part)
        children = part.get("parts")
        if isinstance(children, list) and children:
            if depth + 1 >= max_depth:
                logger.warning("gmail_part_depth_exceeded depth=%s", depth + 1)
                continue
            stack.extend((child, depth + 1) for child in reversed(children))
    return found


def _decode_attachment_data(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


class GmailMailbox:
    source = "Gmail"

    def __init__(
        self,
        credentials: Credentials,
        timeout_s: float | None = None,
        max_part_depth: int | None = None,
    ):
        self._credentials = credentials
        self._timeout_s = timeout_s if timeout_s is not None else settings.mail_timeout_s
        self._max_part_depth = max_part_depth or settings.harvest_max_part_depth
        # googleapiclient resources share an httplib2 connection and are not thread-safe.
        self._local = threading.local()

    def _service(self):
        service = getattr(self._local, "service", None)
        if service is None:
            http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self._timeout_s))
            service = build("gmail", "v1", http=http, cache_discovery=False)
            self._local.service = service
        return service

    def search_queries(self, days_back: int, extra_keywords: Iterable[str] = ()) -> list[str]:
        return build_search_queries(days_back, extra_keywords)

    def search(self, query: str, max_results: int) -> list[str]:
        try:
            response = (
                self._service()
                .users()
                .messages()
                .list(userId="me", q=query, maxResults=max_results)
                .execute()
            )
        except _TRANSPORT_ERRORS as exc:
            raise MailboxFetchFailed(f"Gmail search failed: {exc}") from exc
        return [m["id"] for m in response.get("messages", []) if isinstance(m, dict) and m.get("id")]

    def get_message(self, message_id: str) -> dict[str, Any]:
        try:
            return self._service().users().messages().get(userId="me", id=message_id).execute()
        except _TRANSPORT_ERRORS as exc:
            raise MailboxFetchFailed(f"Gmail message fetch failed for {message_id}: {exc}") from exc

    def list_attachments(self, message_id: str) -> list[RawAttachment]:
        payload = self.get_message(message_id).get("payload")
        if not isinstance(payload, dict):
            return []
        headers = payload.get("headers")
        sender = sender_email(headers if isinstance(headers, list) else [])
        parts = payload.get("parts")
        return [
            RawAttachment(
                message_id=message_id,
                attachment_id=part["body"]["attachmentId"],
                filename=part["filename"],
                mime_type=part.get("mimeType") if isinstance(part.get("mimeType"), str) else "",
                sender_email=sender,
            )
            for part in find_attachment_parts(parts if isinstance(parts, list) else [], self._max_part_depth)
        ]

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        try:
            response = (
                self._service()
                .users()
                .messages()
                .attachments()
                .get(userId="me", messageId=message_id, id=attachment_id)
                .execute()
            )
        except _TRANSPORT_ERRORS as exc:
            raise MailboxFetchFailed(f"Gmail attachment fetch failed for {message_id}: {exc}") from exc

        data = response.get("data")
        if not data:
            raise MailboxFetchFailed(f"Gmail returned an empty attachment for {message_id}")
        return _decode_attachment_data(data)
