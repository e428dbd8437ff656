import threading
from typing import Dict, List, Optional

from .schemas import CacheEntry


class VolatileCache:
    """Process-local owner -> document -> entry map.

    Best-effort availability only: contents vanish on restart and entries are
    never refreshed after ingest, so they are read-only fallbacks for when the
    record store cannot be reached. Reads and writes never raise.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, CacheEntry]] = {}

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries.setdefault(entry.owner_id, {})[entry.document_id] = entry

    def get(self, owner_id: str, document_id: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(owner_id, {}).get(document_id)

    def list(self, owner_id: str) -> List[CacheEntry]:
        with self._lock:
            entries = list(self._entries.get(owner_id, {}).values())
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(docs) for docs in self._entries.values())
