"""
Media resolution map: client-chosen media key <-> durable URL.

Pure in-memory state with no I/O. Callers serialize access through RelayState.lock.
"""
import logging
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class MediaResolutionMap:

    def __init__(self):
        self._by_key: Dict[str, str] = {}
        self._by_url: Dict[str, Set[str]] = {}

    def put(self, key: str, url: str) -> None:
        """Map key to url, replacing (and unlinking) any URL it pointed at before."""
        old = self._by_key.get(key)
        if old is not None and old != url:
            self._unlink(old, key)
        self._by_key[key] = url
        self._by_url.setdefault(url, set()).add(key)

    def get(self, key: str) -> Optional[str]:
        return self._by_key.get(key)

    def invalidate_by_url(self, url: str) -> List[str]:
        """Drop every key currently mapped to exactly this url. Returns the removed keys."""
        keys = self._by_url.pop(url, set())
        for key in keys:
            # only remove the forward entry if it still points at this url
            if self._by_key.get(key) == url:
                del self._by_key[key]
        if keys:
            logger.info("invalidated %d media key(s) for %s", len(keys), url)
        return sorted(keys)

    def _unlink(self, url: str, key: str) -> None:
        keys = self._by_url.get(url)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del self._by_url[url]

    def __len__(self) -> int:
        return len(self._by_key)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._by_key)
