import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile

from app.auth import require_admin
from app.config import get_settings
from app.models import (
    AISettings,
    AISettingsUpdate,
    AIStats,
    BlogPost,
    BlogPostCreate,
    BlogPostUpdate,
    DiagnosticsReport,
    FeedbackPage,
    ImageUploadResponse,
    Provider,
    ProviderUpdateRequest,
    Registration,
    RegistrationDecisionRequest,
)
from app.services.ai_assistant import AIAssistant, get_ai_assistant
from app.services.blog_store import BlogStore, BlogStoreError, BlogStoreNotFoundError, get_blog_store
from app.services.csv_export import records_to_csv
from app.services.diagnostics import build_report
from app.services.directory_store import (
    DirectoryStore,
    DirectoryStoreConflictError,
    DirectoryStoreError,
    DirectoryStoreNotFoundError,
    get_directory_store,
)
from app.services.feedback_store import FeedbackStore, FeedbackStoreError, get_feedback_store
from app.services.object_storage import ObjectStorage, StorageError, get_object_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

NO_FEEDBACK_TO_EXPORT = "No hay registros para exportar con el filtro seleccionado."


def _raise_directory_http_error(exc: DirectoryStoreError) -> None:
    if isinstance(exc, DirectoryStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DirectoryStoreConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


def _raise_blog_http_error(exc: BlogStoreError) -> None:
    if isinstance(exc, BlogStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


# Blog


@router.get("/blog", response_model=list[BlogPost])
def list_all_posts(store: BlogStore = Depends(get_blog_store)):
    return store.list_posts(published_only=False)


@router.post("/blog", response_model=BlogPost, status_code=201)
def create_post(payload: BlogPostCreate, store: BlogStore = Depends(get_blog_store)):
    try:
        return store.create_post(payload)
    except BlogStoreError as exc:
        _raise_blog_http_error(exc)


@router.put("/blog/{post_id}", response_model=BlogPost)
def update_post(post_id: int, payload: BlogPostUpdate, store: BlogStore = Depends(get_blog_store)):
    try:
        return store.update_post(post_id, payload)
    except BlogStoreError as exc:
        _raise_blog_http_error(exc)


@router.delete("/blog/{post_id}", status_code=204)
def delete_post(post_id: int, store: BlogStore = Depends(get_blog_store)):
    try:
        store.delete_post(post_id)
    except BlogStoreError as exc:
        _raise_blog_http_error(exc)
    return Response(status_code=204)


@router.post("/blog/images", response_model=ImageUploadResponse, status_code=201)
async def upload_blog_image(
    file: UploadFile = File(...),
    storage: ObjectStorage = Depends(get_object_storage),
):
    data = await file.read()
    try:
        key, url = storage.upload_blog_image(file.filename or "image", file.content_type, data)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OSError as exc:
        logger.exception("Blog image upload failed")
        raise HTTPException(status_code=502, detail="No se pudo subir la imagen") from exc
    return ImageUploadResponse(key=key, url=url)


# Diagnostics and feedback review


@router.get("/diagnostics", response_model=DiagnosticsReport)
def diagnostics(assistant: AIAssistant = Depends(get_ai_assistant)):
    return build_report(get_settings(), llm_configured=assistant.llm_available)


@router.get("/feedback", response_model=FeedbackPage)
def list_feedback(
    filter: str = Query(default="all"),
    page: int = Query(default=0, ge=0),
    page_size: int = Query(default=20, ge=1, le=200),
    store: FeedbackStore = Depends(get_feedback_store),
):
    try:
        return store.page(filter_name=filter, page=page, page_size=page_size)
    except FeedbackStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/feedback/export")
def export_feedback(
    filter: str = Query(default="all"),
    store: FeedbackStore = Depends(get_feedback_store),
):
    try:
        records = store.export_records(filter_name=filter)
    except FeedbackStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not records:
        raise HTTPException(status_code=404, detail=NO_FEEDBACK_TO_EXPORT)
    filename = f"feedback_{filter}_{datetime.now(timezone.utc).strftime('%Y%m%d')}.csv"
    return Response(
        content=records_to_csv(records),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Registrations and providers


@router.get("/registrations", response_model=list[Registration])
def list_registrations(
    status: Optional[str] = Query(default=None),
    store: DirectoryStore = Depends(get_directory_store),
):
    if status and status not in {"pending", "approved", "rejected"}:
        raise HTTPException(status_code=400, detail="status must be one of: pending, approved, rejected")
    return store.list_registrations(status=status)


@router.post("/registrations/{registration_id}/approve", response_model=Registration)
def approve_registration(
    registration_id: str,
    payload: Optional[RegistrationDecisionRequest] = None,
    store: DirectoryStore = Depends(get_directory_store),
):
    try:
        return store.approve_registration(registration_id, notes=payload.notes if payload else None)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


@router.post("/registrations/{registration_id}/reject", response_model=Registration)
def reject_registration(
    registration_id: str,
    payload: Optional[RegistrationDecisionRequest] = None,
    store: DirectoryStore = Depends(get_directory_store),
):
    try:
        return store.reject_registration(registration_id, notes=payload.notes if payload else None)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


@router.get("/providers", response_model=list[Provider])
def list_all_providers(store: DirectoryStore = Depends(get_directory_store)):
    return store.list_providers(include_inactive=True)


@router.put("/providers/{provider_id}", response_model=Provider)
def update_provider(
    provider_id: str,
    payload: ProviderUpdateRequest,
    store: DirectoryStore = Depends(get_directory_store),
):
    try:
        return store.update_provider(provider_id, payload)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


@router.post("/providers/{provider_id}/deactivate", response_model=Provider)
def deactivate_provider(provider_id: str, store: DirectoryStore = Depends(get_directory_store)):
    try:
        return store.set_provider_active(provider_id, active=False)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


@router.post("/providers/{provider_id}/activate", response_model=Provider)
def activate_provider(provider_id: str, store: DirectoryStore = Depends(get_directory_store)):
    try:
        return store.set_provider_active(provider_id, active=True)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


# Assistant settings


@router.get("/ai/settings", response_model=AISettings)
def get_ai_settings(store: FeedbackStore = Depends(get_feedback_store)):
    return store.load_settings()


@router.put("/ai/settings", response_model=AISettings)
def update_ai_settings(payload: AISettingsUpdate, store: FeedbackStore = Depends(get_feedback_store)):
    try:
        return store.update_settings(payload)
    except FeedbackStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/ai/stats", response_model=AIStats)
def get_ai_stats(
    period: str = Query(default="today"),
    store: FeedbackStore = Depends(get_feedback_store),
):
    try:
        return store.stats(period=period)
    except FeedbackStoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
