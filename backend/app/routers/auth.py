import logging

from fastapi import APIRouter, Depends, HTTPException

from app.auth import ADMIN_SUBJECT, check_admin_password, create_access_token, provider_subject, require_admin
from app.models import AuthLoginRequest, AuthLoginResponse, AuthMeResponse, ProviderLoginRequest
from app.services.directory_store import (
    DirectoryStore,
    DirectoryStoreConflictError,
    DirectoryStoreNotFoundError,
    get_directory_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    if not payload.password:
        raise HTTPException(status_code=400, detail="password is required")
    if not check_admin_password(payload.password):
        logger.warning("admin_login_failed")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(subject=ADMIN_SUBJECT)
    return AuthLoginResponse(access_token=token, expires_at=expires_at)


@router.post("/provider/login", response_model=AuthLoginResponse)
def provider_login(payload: ProviderLoginRequest, store: DirectoryStore = Depends(get_directory_store)):
    if not payload.registration_id.strip() or not payload.access_code.strip():
        raise HTTPException(status_code=400, detail="registration_id and access_code are required")
    try:
        registration = store.authenticate_provider(payload.registration_id.strip(), payload.access_code.strip())
    except DirectoryStoreNotFoundError as exc:
        logger.warning("provider_login_failed registration_id=%s", payload.registration_id)
        raise HTTPException(status_code=401, detail="Invalid credentials") from exc
    except DirectoryStoreConflictError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    token, expires_at = create_access_token(subject=provider_subject(registration.provider_id))
    return AuthLoginResponse(access_token=token, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(subject: str = Depends(require_admin)):
    return AuthMeResponse(subject=subject)
