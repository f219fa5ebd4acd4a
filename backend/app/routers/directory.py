from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.models import (
    CategoryProvidersResponse,
    Category,
    Plan,
    Provider,
    ProviderListResponse,
    ProviderReviewsResponse,
    Review,
    ReviewRequest,
)
from app.services.directory_store import (
    DirectoryStore,
    DirectoryStoreConflictError,
    DirectoryStoreError,
    DirectoryStoreNotFoundError,
    get_directory_store,
    review_summary,
)
from app.services.provider_search import PRICE_RANGES, FilterCriteria, apply_filters, available_cities

router = APIRouter(tags=["directory"])

EMPTY_RESULTS_MESSAGE = "No se encontraron proveedores con los filtros seleccionados."
EMPTY_CATEGORY_MESSAGE = "Aún no hay proveedores en esta categoría."
EMPTY_REVIEWS_MESSAGE = "Aún no hay reseñas. ¡Sé el primero en compartir tu experiencia!"


def _raise_directory_http_error(exc: DirectoryStoreError) -> None:
    if isinstance(exc, DirectoryStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DirectoryStoreConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


def _criteria(
    q: Optional[str],
    city: Optional[str],
    premium: Optional[bool],
    featured: Optional[bool],
    price_range: Optional[str],
) -> FilterCriteria:
    if price_range and price_range not in PRICE_RANGES:
        raise HTTPException(status_code=400, detail="price_range must be one of: 0-1000, 1000-5000, 5000+")
    return FilterCriteria(
        search=q or "",
        city=(city or "").strip(),
        is_premium=premium,
        featured=featured,
        price_range=price_range or "",
    )


@router.get("/categories", response_model=list[Category])
def list_categories(store: DirectoryStore = Depends(get_directory_store)):
    return store.list_categories()


@router.get("/categories/{slug}/providers", response_model=CategoryProvidersResponse)
def list_category_providers(
    slug: str,
    q: Optional[str] = Query(default=None),
    city: Optional[str] = Query(default=None),
    premium: Optional[bool] = Query(default=None),
    featured: Optional[bool] = Query(default=None),
    price_range: Optional[str] = Query(default=None),
    store: DirectoryStore = Depends(get_directory_store),
):
    category = store.get_category_by_slug(slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    criteria = _criteria(q, city, premium, featured, price_range)
    providers = apply_filters(store.list_providers(category_id=category.id), criteria)
    message = None
    if not providers:
        message = EMPTY_CATEGORY_MESSAGE if criteria.is_empty() else EMPTY_RESULTS_MESSAGE
    return CategoryProvidersResponse(category=category, providers=providers, message=message)


@router.get("/providers", response_model=ProviderListResponse)
def list_providers(
    q: Optional[str] = Query(default=None),
    city: Optional[str] = Query(default=None),
    premium: Optional[bool] = Query(default=None),
    featured: Optional[bool] = Query(default=None),
    price_range: Optional[str] = Query(default=None),
    category_id: Optional[str] = Query(default=None),
    store: DirectoryStore = Depends(get_directory_store),
):
    criteria = _criteria(q, city, premium, featured, price_range)
    providers = apply_filters(store.list_providers(category_id=category_id), criteria)
    return ProviderListResponse(
        providers=providers,
        total=len(providers),
        message=None if providers else EMPTY_RESULTS_MESSAGE,
    )


@router.get("/providers/cities", response_model=list[str])
def list_cities(store: DirectoryStore = Depends(get_directory_store)):
    return available_cities(store.list_providers())


@router.get("/providers/featured", response_model=list[Provider])
def list_featured_providers(
    limit: int = Query(default=12, ge=1, le=50),
    store: DirectoryStore = Depends(get_directory_store),
):
    return store.list_providers(featured_only=True)[:limit]


@router.get("/providers/{provider_id}", response_model=Provider)
def get_provider(provider_id: str, store: DirectoryStore = Depends(get_directory_store)):
    provider = store.get_provider(provider_id)
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider


@router.get("/providers/{provider_id}/reviews", response_model=ProviderReviewsResponse)
def list_provider_reviews(provider_id: str, store: DirectoryStore = Depends(get_directory_store)):
    if not store.get_provider(provider_id):
        raise HTTPException(status_code=404, detail="Provider not found")
    reviews = store.list_reviews(provider_id)
    return ProviderReviewsResponse(
        reviews=reviews,
        summary=review_summary(reviews),
        message=None if reviews else EMPTY_REVIEWS_MESSAGE,
    )


@router.post("/providers/{provider_id}/reviews", response_model=Review, status_code=201)
def create_provider_review(
    provider_id: str,
    payload: ReviewRequest,
    store: DirectoryStore = Depends(get_directory_store),
):
    try:
        return store.create_review(provider_id, payload)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)


@router.post("/providers/{provider_id}/reviews/{review_id}/helpful", response_model=Review)
def mark_review_helpful(provider_id: str, review_id: int, store: DirectoryStore = Depends(get_directory_store)):
    try:
        return store.mark_review_helpful(provider_id, review_id)
    except DirectoryStoreError as exc:
        _raise_directory_http_error(exc)

@router.get("/plans", response_model=list[Plan])
def list_plans(store: DirectoryStore = Depends(get_directory_store)):
    return store.list_plans()
