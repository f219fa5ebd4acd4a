from fastapi import APIRouter, Depends, HTTPException, Query

from app.models import FavoriteProvider, FavoriteRequest
from app.services.directory_store import DirectoryStore, get_directory_store
from app.services.favorites_store import FavoritesStore, get_favorites_store

router = APIRouter(prefix="/favorites", tags=["favorites"])


@router.get("", response_model=list[FavoriteProvider])
def list_favorites(
    visitor_id: str = Query(..., min_length=1),
    favorites: FavoritesStore = Depends(get_favorites_store),
    store: DirectoryStore = Depends(get_directory_store),
):
    rows: list[FavoriteProvider] = []
    for provider_id in favorites.list_ids(visitor_id):
        provider = store.get_provider(provider_id)
        # Deactivated or removed providers drop out of the list silently.
        if provider:
            rows.append(
                FavoriteProvider(
                    id=provider.id,
                    name=provider.name,
                    description=provider.description,
                    profile_image_url=provider.profile_image_url,
                    whatsapp=provider.whatsapp,
                )
            )
    return rows


@router.post("", response_model=dict, status_code=201)
def add_favorite(
    payload: FavoriteRequest,
    favorites: FavoritesStore = Depends(get_favorites_store),
    store: DirectoryStore = Depends(get_directory_store),
):
    if not store.get_provider(payload.provider_id):
        raise HTTPException(status_code=404, detail="Provider not found")
    try:
        ids = favorites.add(payload.visitor_id, payload.provider_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"favorites": ids}


@router.delete("", response_model=dict)
def remove_favorite(
    visitor_id: str = Query(..., min_length=1),
    provider_id: str = Query(..., min_length=1),
    favorites: FavoritesStore = Depends(get_favorites_store),
):
    if not favorites.remove(visitor_id, provider_id):
        raise HTTPException(status_code=404, detail="Favorite not found")
    return {"favorites": favorites.list_ids(visitor_id)}
