import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from screener.api.deps import get_credentials, get_cv_store
from screener.core.config import settings
from screener.core.credentials import CredentialStore
from screener.core.security import current_user_id
from screener.mail import gmail, outlook
from screener.schemas.cv import EmailProviderStatus
from screener.storage.db import CVStore

router = APIRouter()
logger = logging.getLogger(__name__)


def _frontend_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.frontend_url}?{urlencode(params)}", status_code=status.HTTP_302_FOUND)


@router.get("/auth/gmail")
def gmail_auth_url(
    user_id: str = Depends(current_user_id),
    credentials: CredentialStore = Depends(get_credentials),
):
    state = credentials.begin_connect(user_id, "gmail")
    try:
        url, code_verifier = gmail.authorization_url(state)
    except RuntimeError as exc:
        credentials.take_pending(state, "gmail")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    credentials.attach_flow_context(state, code_verifier)
    return {"auth_url": url}


@router.get("/auth/callback/gmail")
def gmail_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    credentials: CredentialStore = Depends(get_credentials),
):
    if error or not code or not state:
        logger.warning("gmail_auth_rejected error=%s", error)
        return _frontend_redirect(error="gmail_auth_failed")
    try:
        pending = credentials.take_pending(state, "gmail")
        granted = gmail.exchange_code(code, pending.flow_context)
        credentials.complete_connect(pending.user_id, granted, "gmail")
    except Exception as exc:  # noqa: BLE001 - any failure sends the user back with an error flag
        logger.exception("gmail_auth_failed: %s", exc)
        return _frontend_redirect(error="gmail_auth_failed")
    return _frontend_redirect(gmail_connected="true")


@router.post("/auth/gmail/disconnect")
def gmail_disconnect(
    user_id: str = Depends(current_user_id),
    credentials: CredentialStore = Depends(get_credentials),
):
    return {"disconnected": credentials.disconnect(user_id, "gmail")}


@router.get("/auth/outlook")
def outlook_auth_url(
    user_id: str = Depends(current_user_id),
    credentials: CredentialStore = Depends(get_credentials),
):
    state = credentials.begin_connect(user_id, "outlook")
    try:
        flow = outlook.begin_auth_flow(state)
    except RuntimeError as exc:
        credentials.take_pending(state, "outlook")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    credentials.attach_flow_context(state, flow)
    return {"auth_url": flow["auth_uri"]}


@router.get("/auth/callback/outlook")
def outlook_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    credentials: CredentialStore = Depends(get_credentials),
):
    if error or not code or not state:
        logger.warning("outlook_auth_rejected error=%s", error)
        return _frontend_redirect(error="outlook_auth_failed")
    try:
        pending = credentials.take_pending(state, "outlook")
        token = outlook.exchange_code(pending.flow_context, dict(request.query_params))
        credentials.complete_connect(pending.user_id, token, "outlook")
    except Exception as exc:  # noqa: BLE001 - any failure sends the user back with an error flag
        logger.exception("outlook_auth_failed: %s", exc)
        return _frontend_redirect(error="outlook_auth_failed")
    return _frontend_redirect(outlook_connected="true")


@router.post("/auth/outlook/disconnect")
def outlook_disconnect(
    user_id: str = Depends(current_user_id),
    credentials: CredentialStore = Depends(get_credentials),
):
    return {"disconnected": credentials.disconnect(user_id, "outlook")}


@router.get("/email-providers", response_model=list[EmailProviderStatus])
def email_providers(
    user_id: str = Depends(current_user_id),
    credentials: CredentialStore = Depends(get_credentials),
    store: CVStore = Depends(get_cv_store),
):
    providers = []
    for provider, label in (("gmail", "Gmail"), ("outlook", "Outlook")):
        if credentials.is_connected(user_id, provider):
            latest = store.latest_fetch_by_source(user_id, provider)
            providers.append(
                EmailProviderStatus(
                    name=label,
                    status="connected",
                    last_fetch=latest.fetched_at if latest else None,
                )
            )
        else:
            providers.append(
                EmailProviderStatus(name=label, status="not_connected", auth_url=f"/v1/auth/{provider}")
            )
    return providers
