"""In-memory search and facet filters over already-fetched providers."""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, TypeVar

P = TypeVar("P")

PRICE_RANGES = {"0-1000", "1000-5000", "5000+"}


def _get(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _contains(value: Any, term: str) -> bool:
    if not isinstance(value, str):
        return False
    return term in value.lower()


def matches_term(provider: Any, term: str) -> bool:
    """True when name, description or any nested service name/description contains ``term``.

    ``term`` must already be lower-cased.
    """
    if _contains(_get(provider, "name"), term) or _contains(_get(provider, "description"), term):
        return True
    services = _get(provider, "services") or []
    return any(
        _contains(_get(service, "name"), term) or _contains(_get(service, "description"), term)
        for service in services
    )


def search(providers: Sequence[P], term: Optional[str]) -> Sequence[P]:
    if term is None or not term.strip():
        return providers
    needle = term.lower()
    return [provider for provider in providers if matches_term(provider, needle)]


def min_service_price(provider: Any) -> float:
    services = _get(provider, "services") or []
    prices = [float(_get(service, "price") or 0) for service in services]
    return min(prices) if prices else 0.0


def matches_price_range(provider: Any, price_range: Optional[str]) -> bool:
    if not price_range:
        return True
    price = min_service_price(provider)
    if price_range == "0-1000":
        return 0 <= price <= 1000
    if price_range == "1000-5000":
        return 1000 < price <= 5000
    if price_range == "5000+":
        return price > 5000
    return True


@dataclass
class FilterCriteria:
    search: str = ""
    city: str = ""
    is_premium: Optional[bool] = None
    featured: Optional[bool] = None
    price_range: str = ""

    def is_empty(self) -> bool:
        return (
            not self.search.strip()
            and not self.city
            and self.is_premium is None
            and self.featured is None
            and not self.price_range
        )


def apply_filters(providers: Sequence[P], criteria: FilterCriteria) -> List[P]:
    result: List[P] = []
    for provider in search(providers, criteria.search):
        if criteria.city and _get(provider, "city") != criteria.city:
            continue
        if criteria.is_premium is not None and bool(_get(provider, "is_premium")) != criteria.is_premium:
            continue
        if criteria.featured is not None and bool(_get(provider, "featured")) != criteria.featured:
            continue
        if not matches_price_range(provider, criteria.price_range):
            continue
        result.append(provider)
    return result


def available_cities(providers: Iterable[Any]) -> List[str]:
    return sorted({city for city in (_get(p, "city") for p in providers) if city})
