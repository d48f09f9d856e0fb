"""
Pending message queue.

Holds messages whose text still references media keys that have no URL yet.
Each entry's unresolved set only ever shrinks; an entry leaves the queue exactly
when that set becomes empty (or when it is evicted by age).
"""
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from blobrelay.config import DEFAULT_MEDIA_KEY_PATTERN
from blobrelay.models import Message

logger = logging.getLogger(__name__)


def extract_media_keys(text: str, pattern: re.Pattern) -> List[str]:
    """Distinct media key references in text, in order of first appearance."""
    seen = []
    for match in pattern.finditer(text or ''):
        key = match.group(0)
        if key not in seen:
            seen.append(key)
    return seen


def compile_key_pattern(pattern: str) -> re.Pattern:
    return re.compile(pattern)


def substitute_keys(text: str, urls: Dict[str, str], pattern: re.Pattern) -> str:
    """Replace whole media key tokens found in urls; a key inside a longer token is left alone."""
    return pattern.sub(lambda m: urls.get(m.group(0), m.group(0)), text)


@dataclass(eq=False)
class PendingEntry:
    message: Message
    unresolved: Set[str]
    enqueued_at: float = field(default_factory=time.monotonic)

    @property
    def message_id(self):
        return self.message.id

    @property
    def sender(self) -> str:
        return self.message.sender


class PendingMessageQueue:

    def __init__(self, key_pattern: Optional[re.Pattern] = None):
        self.key_pattern = key_pattern or compile_key_pattern(DEFAULT_MEDIA_KEY_PATTERN)
        self._entries: List[PendingEntry] = []

    def add(self, entry: PendingEntry) -> None:
        if not entry.unresolved:
            raise ValueError('pending entry must have at least one unresolved key')
        self._entries.append(entry)
        logger.debug("queued message %s waiting on %s", entry.message_id, sorted(entry.unresolved))

    def resolve(self, key: str, url: str) -> List[PendingEntry]:
        """
        Substitute url for key in every entry waiting on key.

        Returns the entries that became fully resolved, in insertion order; they are
        no longer in the queue when this returns.
        """
        ready = []
        for entry in self._entries:
            if key not in entry.unresolved:
                continue
            new_text = substitute_keys(entry.message.body.text, {key: url}, self.key_pattern)
            remaining = entry.unresolved - {key}
            # commit both together so a failure above leaves the entry untouched
            entry.message.body.text = new_text
            entry.unresolved = remaining
            if not remaining:
                ready.append(entry)
        if ready:
            self._remove(ready)
            logger.info("key %s released %d message(s)", key, len(ready))
        return ready

    def evict_expired(self, ttl: float, now: Optional[float] = None) -> List[PendingEntry]:
        """Remove and return entries that have been waiting longer than ttl seconds."""
        now = time.monotonic() if now is None else now
        expired = [e for e in self._entries if now - e.enqueued_at > ttl]
        if expired:
            self._remove(expired)
        return expired

    def _remove(self, entries: List[PendingEntry]) -> None:
        doomed = {id(e) for e in entries}
        self._entries = [e for e in self._entries if id(e) not in doomed]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PendingEntry]:
        return iter(list(self._entries))
