from __future__ import annotations

import base64
import logging

from screener.parsing.extract import extract_document, is_placeholder_text
from screener.schemas.cv import AnalysisCreate
from screener.services.scoring import ScoringClient, ScoringError
from screener.storage.db import CVStore

logger = logging.getLogger(__name__)


class NoCVsToAnalyze(LookupError):
    pass


class AnalysisBatchFailed(RuntimeError):
    pass


class ReprocessFailed(RuntimeError):
    pass


def analyze_all_cvs(user_id: str, job_description: str, scorer: ScoringClient, store: CVStore) -> int:
    """Score every stored CV of ``user_id`` and append one analysis per success.

    A CV whose scoring fails is logged and skipped. The batch fails only when
    no CV could be scored.
    """
    cvs = store.list_cvs(user_id)
    if not cvs:
        raise NoCVsToAnalyze("No CVs available to analyze")

    success_count = 0
    for cv in cvs:
        try:
            result = scorer.score(cv.extracted_text, job_description, cv.candidate_name)
        except ScoringError as exc:
            logger.warning("cv_analysis_failed cv=%s code=%s: %s", cv.id, exc.code, exc)
            continue
        store.create_analysis(
            AnalysisCreate(
                user_id=user_id,
                cv_id=cv.id,
                job_description=job_description,
                score=result.score,
                strengths=result.strengths,
                weaknesses=result.weaknesses,
            )
        )
        success_count += 1

    logger.info("cv_analysis_finished user=%s total=%s scored=%s", user_id, len(cvs), success_count)
    if success_count == 0:
        raise AnalysisBatchFailed("Failed to analyze any CVs")
    return success_count


def reprocess_cvs(user_id: str, store: CVStore) -> int:
    """Re-extract text for stored CVs that only hold a diagnostic placeholder.

    Returns 0 when nothing needed re-extraction. Raises ``ReprocessFailed``
    when candidates existed but none of them yielded readable text.
    """
    candidates = 0
    processed = 0
    for cv in store.list_cvs(user_id):
        if not cv.file_buffer or not is_placeholder_text(cv.extracted_text):
            continue
        candidates += 1
        try:
            document = extract_document(base64.b64decode(cv.file_buffer), cv.file_type)
        except Exception as exc:  # noqa: BLE001 - keep reprocessing the remaining CVs
            logger.warning("cv_reprocess_failed cv=%s: %s", cv.id, exc)
            continue
        if document.status != "ok":
            continue
        if store.update_extracted_text(cv.id, user_id, document.text):
            processed += 1

    logger.info("cv_reprocess_finished user=%s candidates=%s updated=%s", user_id, candidates, processed)
    if candidates and not processed:
        raise ReprocessFailed(f"Failed to re-extract text from any of {candidates} CV(s)")
    return processed
