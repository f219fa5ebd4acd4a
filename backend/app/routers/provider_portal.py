import logging

from fastapi import APIRouter, Depends, HTTPException

from app.auth import require_provider
from app.models import Provider, ProviderSelfUpdateRequest, ProviderUpdateRequest
from app.services.directory_store import (
    DirectoryStore,
    DirectoryStoreConflictError,
    DirectoryStoreError,
    DirectoryStoreNotFoundError,
    get_directory_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/provider", tags=["provider"])


def _raise_directory_http_error(exc: DirectoryStoreError) -> None:
    if isinstance(exc, DirectoryStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DirectoryStoreConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


@router.get("/me", response_model=Provider)
def get_own_listing(provider_id: str = Depends(require_provider), store: DirectoryStore = Depends(get_directory_store)):
    provider = store.get_provider(provider_id, include_inactive=True)
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider


@router.put("/me", response_model=Provider)
def update_own_listing(
    payload: ProviderSelfUpdateRequest,
    provider_id: str = Depends(require_provider),
    store: DirectoryStore = Depends(get_directory_store),
):
    update = ProviderUpdateRequest(**payload.model_dump(exclude_unset=True))
    try:
        provider = store.update_provider(provider_id, update)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)
    logger.info("provider_self_update provider_id=%s fields=%s", provider_id, sorted(update.model_fields_set))
    return provider
