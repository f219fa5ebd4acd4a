from fastapi import APIRouter, Depends, HTTPException

from app.models import Registration, RegistrationRequest, RegistrationStatus
from app.services.directory_store import (
    DirectoryStore,
    DirectoryStoreConflictError,
    DirectoryStoreError,
    DirectoryStoreNotFoundError,
    get_directory_store,
)

router = APIRouter(prefix="/registrations", tags=["registrations"])


def _raise_directory_http_error(exc: DirectoryStoreError) -> None:
    if isinstance(exc, DirectoryStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DirectoryStoreConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


@router.post("", response_model=Registration, status_code=201)
def create_registration(payload: RegistrationRequest, store: DirectoryStore = Depends(get_directory_store)):
    try:
        return store.create_registration(payload)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


@router.get("/{registration_id}", response_model=RegistrationStatus)
def get_registration_status(registration_id: str, store: DirectoryStore = Depends(get_directory_store)):
    registration = store.get_registration(registration_id)
    if not registration:
        raise HTTPException(status_code=404, detail="Registration not found")
    return RegistrationStatus(
        id=registration.id,
        status=registration.status,
        admin_notes=registration.admin_notes,
        provider_id=registration.provider_id,
        payment_status=registration.metadata.get("payment_status"),
    )
