import asyncio

from blobrelay.pending import PendingMessageQueue, compile_key_pattern
from blobrelay.resolution import MediaResolutionMap


class RelayState:
    """Resolution map + pending queue, and the one lock that serializes every mutation of them."""

    def __init__(self, media_key_pattern: str):
        self.media = MediaResolutionMap()
        self.key_pattern = compile_key_pattern(media_key_pattern)
        self.pending = PendingMessageQueue(self.key_pattern)
        self.lock = asyncio.Lock()
