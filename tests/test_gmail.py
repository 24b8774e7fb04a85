import base64
import sys
import unittest
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import httplib2  # noqa: E402
from google.oauth2.credentials import Credentials  # noqa: E402
from googleapiclient.errors import HttpError  # noqa: E402

from screener.core.config import settings  # noqa: E402
from screener.mail import gmail  # noqa: E402
from screener.mail.gmail import build_search_queries, find_attachment_parts, sender_email  # noqa: E402
from screener.mail.types import MailboxFetchFailed  # noqa: E402


def _leaf(filename, attachment_id, mime_type="application/octet-stream"):
    return {"filename": filename, "mimeType": mime_type, "body": {"attachmentId": attachment_id}}


class QueryAndHeaderTests(unittest.TestCase):
    def test_queries_carry_date_window_and_extra_keywords(self):
        queries = build_search_queries(14, ["data engineer", "Resume", "  "])
        self.assertTrue(all(q.endswith("newer_than:14d") for q in queries))
        self.assertEqual(len(queries), 8)
        self.assertIn('has:attachment "data engineer" newer_than:14d', queries)

    def test_sender_prefers_angle_address(self):
        self.assertEqual(sender_email([{"name": "From", "value": "Jane <jane@x.com>"}]), "jane@x.com")
        self.assertEqual(sender_email([{"name": "from", "value": "jane@x.com"}]), "jane@x.com")
        self.assertEqual(sender_email([{"name": "To", "value": "a@b.com"}]), "unknown@example.com")
        self.assertEqual(sender_email(["From: jane@x.com", {"name": "From", "value": None}]), "unknown@example.com")


class PartWalkTests(unittest.TestCase):
    def test_part_walk_recurses_and_respects_depth_guard(self):
        nested = {"mimeType": "multipart/mixed", "parts": [{"parts": [_leaf("cv.pdf", "a1")]}]}
        self.assertEqual(len(find_attachment_parts([nested], max_depth=20)), 1)
        self.assertEqual(find_attachment_parts([nested], max_depth=2), [])

    def test_part_without_attachment_id_is_ignored(self):
        parts = [{"filename": "cv.pdf", "body": {"data": "abc"}}, {"filename": "", "body": {"attachmentId": "x"}}]
        self.assertEqual(find_attachment_parts(parts, max_depth=20), [])

    def test_malformed_parts_are_skipped(self):
        parts = [
            {"filename": "x.pdf", "body": "oops"},
            {"filename": ["cv.pdf"], "body": {"attachmentId": "a0"}},
            {"filename": "cv.pdf", "body": {"attachmentId": 7}},
            "not a part",
            _leaf("good.pdf", "a1"),
        ]
        found = find_attachment_parts(parts, max_depth=20)
        self.assertEqual([p["filename"] for p in found], ["good.pdf"])


class GmailMailboxTests(unittest.TestCase):
    def setUp(self):
        self.service = MagicMock()
        self.mailbox = gmail.GmailMailbox(Credentials(token="access-token"), timeout_s=5)
        patcher = patch.object(gmail.GmailMailbox, "_service", return_value=self.service)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_search_returns_message_ids(self):
        self.service.users().messages().list().execute.return_value = {
            "messages": [{"id": "m1"}, {"id": "m2"}, {}]
        }
        self.assertEqual(self.mailbox.search("has:attachment newer_than:30d", 50), ["m1", "m2"])

    def test_search_without_hits(self):
        self.service.users().messages().list().execute.return_value = {"resultSizeEstimate": 0}
        self.assertEqual(self.mailbox.search("has:attachment", 50), [])

    def test_list_attachments_reads_nested_parts_and_sender(self):
        self.service.users().messages().get().execute.return_value = {
            "payload": {
                "headers": [{"name": "From", "value": "Jane Doe <jane.doe@x.com>"}],
                "parts": [
                    {"filename": "x.pdf", "body": "oops"},
                    {"mimeType": "multipart/alternative", "parts": [_leaf("resume.docx", "a1", "application/msword")]},
                ],
            }
        }
        found = self.mailbox.list_attachments("m1")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].filename, "resume.docx")
        self.assertEqual(found[0].attachment_id, "a1")
        self.assertEqual(found[0].sender_email, "jane.doe@x.com")
        self.assertEqual(found[0].message_id, "m1")

    def test_list_attachments_without_payload(self):
        self.service.users().messages().get().execute.return_value = {"id": "m1"}
        self.assertEqual(self.mailbox.list_attachments("m1"), [])

    def test_attachment_data_is_unpadded_urlsafe_base64(self):
        raw = b"%PDF-1.4 \xff\xfe resume bytes"
        encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        self.service.users().messages().attachments().get().execute.return_value = {"data": encoded}
        self.assertEqual(self.mailbox.get_attachment("m1", "a1"), raw)

    def test_empty_attachment_is_a_fetch_failure(self):
        self.service.users().messages().attachments().get().execute.return_value = {"size": 0}
        with self.assertRaises(MailboxFetchFailed):
            self.mailbox.get_attachment("m1", "a1")

    def test_http_errors_become_fetch_failures(self):
        error = HttpError(httplib2.Response({"status": 401, "reason": "Unauthorized"}), b"invalid_grant")
        self.service.users().messages().get().execute.side_effect = error
        with self.assertRaises(MailboxFetchFailed):
            self.mailbox.list_attachments("m1")


class OAuthConfigTests(unittest.TestCase):
    def test_missing_client_credentials(self):
        unconfigured = replace(settings, google_client_id=None, google_client_secret=None)
        with patch.object(gmail, "settings", unconfigured):
            with self.assertRaises(RuntimeError):
                gmail.authorization_url("state-1")

    def test_consent_url_carries_state_and_offline_access(self):
        configured = replace(settings, google_client_id="client-id", google_client_secret="client-secret")
        with patch.object(gmail, "settings", configured):
            url, _ = gmail.authorization_url("state-1")
        self.assertIn("state=state-1", url)
        self.assertIn("access_type=offline", url)
        self.assertIn("client_id=client-id", url)


if __name__ == "__main__":
    unittest.main()
