from __future__ import annotations

import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

from screener.candidates.identity import resolve_candidate_identity
from screener.core.config import settings
from screener.mail.types import MailboxFetchFailed, MailboxSearch, RawAttachment
from screener.parsing.extract import DEGRADED_TEXT_PREFIX, extract_document
from screener.schemas.cv import CVCreate, CVRecord

logger = logging.getLogger(__name__)

DEGRADED_CANDIDATE_NAME = "Unknown"

RESUME_EXTENSIONS = (".pdf", ".doc", ".docx")
RESUME_MIME_MARKERS = ("pdf", "word", "document")


class HarvestFailed(RuntimeError):
    """Resume attachments were found but not a single CV record could be saved."""

    def __init__(self, discovered: int):
        super().__init__(f"No CVs could be saved from {discovered} resume attachment(s)")
        self.discovered = discovered


def is_resume_like(filename: str, mime_type: str) -> bool:
    name = (filename or "").lower()
    mime = (mime_type or "").lower()
    return name.endswith(RESUME_EXTENSIONS) or any(marker in mime for marker in RESUME_MIME_MARKERS)


def infer_file_type(filename: str) -> str:
    return "pdf" if (filename or "").lower().endswith(".pdf") else "docx"


class AttachmentHarvester:
    """Imports resume attachments from a mailbox as stored CV records.

    One ``harvest`` call is one fetch run: every query the mailbox renders is
    issued, hits are de-duplicated by message id, and every resume-like
    attachment yields exactly one record. Attachments whose text or identity
    cannot be derived are stored as degraded records. A message whose
    metadata cannot be read is skipped. Only ``MailboxFetchFailed`` from a
    search or message listing aborts the run, and a run that finds resume
    attachments but saves none ends in ``HarvestFailed``.
    """

    def __init__(
        self,
        save_cv: Callable[[CVCreate], CVRecord],
        *,
        max_workers: int | None = None,
        page_size: int | None = None,
    ):
        self._save_cv = save_cv
        self._max_workers = max_workers or settings.harvest_max_workers
        self._page_size = page_size or settings.harvest_page_size

    def harvest(
        self,
        mailbox: MailboxSearch,
        *,
        user_id: str,
        days_back: int,
        extra_keywords: Iterable[str] = (),
    ) -> list[CVRecord]:
        queries = mailbox.search_queries(days_back, list(extra_keywords))
        logger.info("harvest_started user=%s source=%s queries=%s days=%s", user_id, mailbox.source, len(queries), days_back)

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            hits = list(pool.map(lambda q: mailbox.search(q, self._page_size), queries))
            message_ids = list(dict.fromkeys(mid for batch in hits for mid in batch))
            logger.info("harvest_messages user=%s hits=%s unique=%s", user_id, sum(map(len, hits)), len(message_ids))

            per_message = pool.map(lambda mid: self._discover(mailbox, mid), message_ids)
            attachments = [attachment for batch in per_message for attachment in batch]
            logger.info("harvest_attachments user=%s resume_like=%s", user_id, len(attachments))

            results = list(
                pool.map(lambda att: self._process(mailbox, att, user_id=user_id), attachments)
            )

        records = [record for record in results if record is not None]
        logger.info("harvest_finished user=%s created=%s skipped=%s", user_id, len(records), len(results) - len(records))
        if attachments and not records:
            raise HarvestFailed(len(attachments))
        return records

    def _discover(self, mailbox: MailboxSearch, message_id: str) -> list[RawAttachment]:
        try:
            found = mailbox.list_attachments(message_id)
        except MailboxFetchFailed:
            raise
        except Exception:  # noqa: BLE001 - a malformed message is skipped, not the whole run
            logger.exception("harvest_message_unreadable message=%s", message_id)
            return []

        attachments: list[RawAttachment] = []
        for attachment in found:
            if not is_resume_like(attachment.filename, attachment.mime_type):
                logger.debug(
                    "harvest_skip_attachment message=%s file=%s mime=%s",
                    message_id,
                    attachment.filename,
                    attachment.mime_type,
                )
                continue
            attachments.append(attachment)
        return attachments

    def _process(self, mailbox: MailboxSearch, attachment: RawAttachment, *, user_id: str) -> CVRecord | None:
        file_type = infer_file_type(attachment.filename)
        content: bytes | None = None
        try:
            content = mailbox.get_attachment(attachment.message_id, attachment.attachment_id)
            document = extract_document(content, file_type)
            identity = resolve_candidate_identity(document.text, attachment.sender_email)
            return self._save_cv(
                CVCreate(
                    user_id=user_id,
                    candidate_name=identity.name,
                    candidate_email=identity.email,
                    file_name=attachment.filename,
                    file_type=file_type,
                    extracted_text=document.text,
                    file_buffer=base64.b64encode(content).decode("ascii"),
                    source=mailbox.source,
                )
            )
        except Exception as exc:  # noqa: BLE001 - one attachment must not abort the harvest
            logger.warning(
                "harvest_attachment_failed message=%s file=%s: %s",
                attachment.message_id,
                attachment.filename,
                exc,
            )
            return self._save_degraded(mailbox, attachment, file_type, content, exc, user_id=user_id)

    def _save_degraded(
        self,
        mailbox: MailboxSearch,
        attachment: RawAttachment,
        file_type: str,
        content: bytes | None,
        error: Exception,
        *,
        user_id: str,
    ) -> CVRecord | None:
        try:
            return self._save_cv(
                CVCreate(
                    user_id=user_id,
                    candidate_name=DEGRADED_CANDIDATE_NAME,
                    candidate_email=attachment.sender_email,
                    file_name=attachment.filename,
                    file_type=file_type,
                    extracted_text=f"{DEGRADED_TEXT_PREFIX} {error}",
                    file_buffer=base64.b64encode(content).decode("ascii") if content is not None else None,
                    source=mailbox.source,
                )
            )
        except Exception:  # noqa: BLE001 - skip this attachment and keep harvesting
            logger.exception(
                "harvest_degraded_save_failed message=%s file=%s",
                attachment.message_id,
                attachment.filename,
            )
            return None
