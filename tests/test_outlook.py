import base64
import sys
import unittest
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import httpx  # noqa: E402

from screener.core.config import settings  # noqa: E402
from screener.mail import outlook  # noqa: E402
from screener.mail.outlook import OutlookMailbox  # noqa: E402
from screener.mail.types import MailboxFetchFailed  # noqa: E402


class GraphStub:
    """Answers Graph paths from a dict and records each request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1.0")
        answer = self.routes.get(path)
        if answer is None:
            return httpx.Response(404, json={"error": {"code": "ErrorItemNotFound"}})
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)


def _mailbox(stub):
    return OutlookMailbox("graph-token", timeout_s=5, transport=httpx.MockTransport(stub))


class OutlookMailboxTests(unittest.TestCase):
    def test_query_filters_attachments_within_window(self):
        queries = _mailbox(GraphStub({})).search_queries(14, ["python"])
        self.assertEqual(len(queries), 1)
        self.assertTrue(queries[0].startswith("hasAttachments eq true and receivedDateTime ge "))
        self.assertTrue(queries[0].endswith("Z"))

    def test_search_sends_filter_and_token(self):
        stub = GraphStub({"/me/messages": {"value": [{"id": "AAMk1"}, {"id": ""}, {"subject": "x"}]}})
        ids = _mailbox(stub).search("hasAttachments eq true", 50)

        self.assertEqual(ids, ["AAMk1"])
        request = stub.requests[0]
        self.assertEqual(request.headers["Authorization"], "Bearer graph-token")
        self.assertEqual(request.url.params["$filter"], "hasAttachments eq true")
        self.assertEqual(request.url.params["$top"], "50")

    def test_list_attachments_keeps_named_file_attachments(self):
        stub = GraphStub(
            {
                "/me/messages/AAMk1": {
                    "from": {"emailAddress": {"name": "Jane Doe", "address": "jane.doe@x.com"}},
                    "attachments": [
                        {
                            "@odata.type": "#microsoft.graph.fileAttachment",
                            "id": "att-1",
                            "name": "Jane_CV.pdf",
                            "contentType": "application/pdf",
                        },
                        {"@odata.type": "#microsoft.graph.itemAttachment", "id": "att-2", "name": "Fwd: note"},
                        {"@odata.type": "#microsoft.graph.fileAttachment", "id": "att-3", "name": None},
                        "garbage",
                    ],
                }
            }
        )
        found = _mailbox(stub).list_attachments("AAMk1")

        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].attachment_id, "att-1")
        self.assertEqual(found[0].filename, "Jane_CV.pdf")
        self.assertEqual(found[0].mime_type, "application/pdf")
        self.assertEqual(found[0].sender_email, "jane.doe@x.com")

    def test_missing_sender_falls_back(self):
        stub = GraphStub({"/me/messages/AAMk1": {"attachments": [{"id": "att-1", "name": "cv.docx"}]}})
        found = _mailbox(stub).list_attachments("AAMk1")
        self.assertEqual(found[0].sender_email, "unknown@example.com")

    def test_attachment_bytes_are_decoded(self):
        raw = b"%PDF-1.7 resume"
        stub = GraphStub(
            {"/me/messages/AAMk1/attachments/att-1": {"contentBytes": base64.b64encode(raw).decode("ascii")}}
        )
        self.assertEqual(_mailbox(stub).get_attachment("AAMk1", "att-1"), raw)

    def test_missing_content_is_a_fetch_failure(self):
        stub = GraphStub({"/me/messages/AAMk1/attachments/att-1": {"name": "cv.pdf"}})
        with self.assertRaises(MailboxFetchFailed):
            _mailbox(stub).get_attachment("AAMk1", "att-1")

    def test_http_errors_become_fetch_failures(self):
        stub = GraphStub({"/me/messages": httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken"}})})
        with self.assertRaises(MailboxFetchFailed):
            _mailbox(stub).search("hasAttachments eq true", 50)

    def test_transport_errors_become_fetch_failures(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        mailbox = OutlookMailbox("graph-token", transport=httpx.MockTransport(unreachable))
        with self.assertRaises(MailboxFetchFailed):
            mailbox.list_attachments("AAMk1")


class OutlookOAuthConfigTests(unittest.TestCase):
    def test_missing_client_credentials(self):
        unconfigured = replace(settings, microsoft_client_id=None, microsoft_client_secret=None)
        with patch.object(outlook, "settings", unconfigured):
            with self.assertRaises(RuntimeError):
                outlook.begin_auth_flow("state-1")

    def test_token_exchange_error_is_raised(self):
        class _App:
            def acquire_token_by_auth_code_flow(self, flow, response):
                return {"error": "invalid_grant", "error_description": "AADSTS70008: code expired"}

        with patch.object(outlook, "_msal_app", return_value=_App()):
            with self.assertRaises(RuntimeError) as ctx:
                outlook.exchange_code({"state": "s"}, {"code": "c", "state": "s"})
        self.assertIn("code expired", str(ctx.exception))

    def test_token_exchange_returns_access_token(self):
        class _App:
            def acquire_token_by_auth_code_flow(self, flow, response):
                return {"access_token": "graph-token", "expires_in": 3600}

        with patch.object(outlook, "_msal_app", return_value=_App()):
            self.assertEqual(outlook.exchange_code({"state": "s"}, {"code": "c", "state": "s"}), "graph-token")


if __name__ == "__main__":
    unittest.main()
