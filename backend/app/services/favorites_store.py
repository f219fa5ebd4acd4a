from collections import OrderedDict
from threading import Lock
from typing import List

MAX_FAVORITES_PER_VISITOR = 200
MAX_VISITORS = 10000


class FavoritesStore:
    """Per-visitor favorite provider ids, kept in process memory.

    The least recently touched visitor is dropped once ``max_visitors`` is exceeded.
    """

    def __init__(self, max_visitors: int = MAX_VISITORS):
        self._lock = Lock()
        self._max_visitors = max_visitors
        self._favorites: "OrderedDict[str, List[str]]" = OrderedDict()

    def add(self, visitor_id: str, provider_id: str) -> List[str]:
        visitor_id = visitor_id.strip()
        provider_id = provider_id.strip()
        if not visitor_id or not provider_id:
            raise ValueError("visitor_id and provider_id are required")
        with self._lock:
            current = self._favorites.setdefault(visitor_id, [])
            self._favorites.move_to_end(visitor_id)
            if provider_id not in current:
                current.insert(0, provider_id)
                del current[MAX_FAVORITES_PER_VISITOR:]
            while len(self._favorites) > self._max_visitors:
                self._favorites.popitem(last=False)
            return list(current)

    def remove(self, visitor_id: str, provider_id: str) -> bool:
        visitor_id = visitor_id.strip()
        with self._lock:
            current = self._favorites.get(visitor_id)
            if not current or provider_id not in current:
                return False
            current.remove(provider_id)
            if not current:
                del self._favorites[visitor_id]
            return True

    def list_ids(self, visitor_id: str) -> List[str]:
        with self._lock:
            return list(self._favorites.get(visitor_id.strip(), []))

    def visitor_count(self) -> int:
        with self._lock:
            return len(self._favorites)


favorites_store = FavoritesStore()


def get_favorites_store() -> FavoritesStore:
    return favorites_store
