import base64
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from screener.api.deps import MailboxFactory, get_credentials, get_cv_store, get_mailbox_factory, get_scoring_client
from screener.core.credentials import CredentialStore
from screener.core.rate_limit import rate_limit
from screener.core.security import current_user_id
from screener.mail.types import MailboxFetchFailed, MailboxNotConnected
from screener.schemas.cv import (
    AnalysisRecord,
    AnalyzeCVsRequest,
    BatchResponse,
    CVWithAnalysis,
    DashboardStats,
    FetchCVsRequest,
    FetchHistoryRecord,
)
from screener.services.harvester import AttachmentHarvester, HarvestFailed
from screener.services.ranking import (
    AnalysisBatchFailed,
    NoCVsToAnalyze,
    ReprocessFailed,
    analyze_all_cvs,
    reprocess_cvs,
)
from screener.services.scoring import ScoringClient
from screener.storage.db import CVStore

router = APIRouter()
logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def content_disposition(file_name: str | None, fallback: str) -> str:
    """Attachment header with a printable-ASCII ``filename`` and an RFC 5987 ``filename*``."""
    name = file_name or fallback
    ascii_name = "".join(ch for ch in name if 32 <= ord(ch) < 127 and ch not in '"\\').strip()
    if not ascii_name or ascii_name.startswith("."):
        ascii_name = fallback
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(name, safe='')}"


@router.post("/fetch-cvs", response_model=BatchResponse)
@rate_limit()
def fetch_cvs(
    request: Request,
    payload: FetchCVsRequest,
    user_id: str = Depends(current_user_id),
    store: CVStore = Depends(get_cv_store),
    credentials: CredentialStore = Depends(get_credentials),
    mailbox_factory: MailboxFactory = Depends(get_mailbox_factory),
):
    _ = request
    try:
        granted = credentials.get(user_id, payload.provider)
    except MailboxNotConnected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    mailbox = mailbox_factory(payload.provider, granted)
    harvester = AttachmentHarvester(store.create_cv)
    try:
        records = harvester.harvest(
            mailbox,
            user_id=user_id,
            days_back=payload.days_back,
            extra_keywords=payload.keywords,
        )
    except MailboxFetchFailed as exc:
        logger.warning("fetch_cvs_failed user=%s provider=%s: %s", user_id, payload.provider, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to fetch emails from {mailbox.source}",
        ) from exc
    except HarvestFailed as exc:
        logger.error("fetch_cvs_nothing_saved user=%s provider=%s discovered=%s", user_id, payload.provider, exc.discovered)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    store.create_fetch_history(user_id, payload.provider, len(records))
    return BatchResponse(count=len(records), message=f"Successfully fetched {len(records)} CV(s)")


@router.post("/analyze-cvs", response_model=BatchResponse)
@rate_limit()
def analyze_cvs(
    request: Request,
    payload: AnalyzeCVsRequest,
    user_id: str = Depends(current_user_id),
    store: CVStore = Depends(get_cv_store),
    scorer: ScoringClient = Depends(get_scoring_client),
):
    _ = request
    try:
        count = analyze_all_cvs(user_id, payload.job_description, scorer, store)
    except NoCVsToAnalyze as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AnalysisBatchFailed as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return BatchResponse(count=count, message=f"Successfully analyzed {count} CV(s)")


@router.post("/reprocess-cvs", response_model=BatchResponse)
def reprocess(
    user_id: str = Depends(current_user_id),
    store: CVStore = Depends(get_cv_store),
):
    try:
        count = reprocess_cvs(user_id, store)
    except ReprocessFailed as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return BatchResponse(count=count, message=f"Successfully reprocessed {count} CV(s)")


@router.get("/results", response_model=list[CVWithAnalysis])
def results(user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    return store.cvs_with_latest_analysis(user_id)


@router.get("/analyses", response_model=list[AnalysisRecord])
def analyses(user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    return store.list_analyses(user_id)


@router.get("/stats", response_model=DashboardStats)
def stats(user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    return store.dashboard_stats(user_id)


@router.get("/fetch-history", response_model=list[FetchHistoryRecord])
def fetch_history(user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    return store.list_fetch_history(user_id)


@router.get("/cv/{cv_id}/download")
def download_cv(cv_id: str, user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    cv = store.get_cv(cv_id, user_id)
    if cv is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="CV not found")
    if not cv.file_buffer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Original file not available")

    return Response(
        content=base64.b64decode(cv.file_buffer),
        media_type=_CONTENT_TYPES.get(cv.file_type, "application/octet-stream"),
        headers={"Content-Disposition": content_disposition(cv.file_name, f"resume.{cv.file_type}")},
    )


@router.delete("/user/cvs")
def delete_cvs(user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    store.delete_all_cvs(user_id)
    return {"message": "All CVs deleted successfully"}


@router.delete("/user/analyses")
def delete_analyses(user_id: str = Depends(current_user_id), store: CVStore = Depends(get_cv_store)):
    store.delete_all_analyses(user_id)
    return {"message": "All analyses deleted successfully"}


@router.delete("/user/account")
def delete_account(
    user_id: str = Depends(current_user_id),
    store: CVStore = Depends(get_cv_store),
    credentials: CredentialStore = Depends(get_credentials),
):
    store.delete_user_data(user_id)
    credentials.disconnect(user_id)
    return {"message": "Account deleted successfully"}
