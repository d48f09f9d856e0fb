"""
Connection hub: client sessions, message relay and deferred media resolution.

Every map/queue mutation and every outbound enqueue happens under
RelayState.lock. Frames are queued onto each session's outbox and written by the
session's own pump task, so no socket I/O happens while the lock is held and
each client receives frames in lock order.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from common import protocol
from blobrelay.models import DirectMedia, Message
from blobrelay.notify import NotificationSink
from blobrelay.pending import PendingEntry, extract_media_keys, substitute_keys
from blobrelay.state import RelayState

logger = logging.getLogger(__name__)


class ClientSession:
    """One connected client. Outbound frames go through an unbounded outbox."""

    def __init__(self, name: str, websocket=None, address: Optional[str] = None):
        self.name = name
        self.websocket = websocket
        self.address = address
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.alive = True

    def push(self, frame: str) -> None:
        # frames for a session whose pump has stopped are dropped
        if self.alive:
            self.outbox.put_nowait(frame)

    def close(self) -> None:
        if self.alive:
            self.outbox.put_nowait(None)

    async def pump(self) -> None:
        """Write queued frames to the websocket until close() is called or a send fails."""
        while True:
            frame = await self.outbox.get()
            if frame is None:
                self.alive = False
                return
            try:
                await self.websocket.send_text(frame)
            except Exception as e:
                logger.warning("send to %s failed, dropping session output: %s", self.name, e)
                self.alive = False
                while not self.outbox.empty():
                    self.outbox.get_nowait()
                return


class ConnectionHub:

    def __init__(self, state: RelayState, notifier: NotificationSink):
        self.state = state
        self.notifier = notifier
        self.clients: Dict[str, ClientSession] = {}

    async def on_connect(self, session: ClientSession) -> bool:
        """Register session. Returns False when its name is already in use."""
        async with self.state.lock:
            if session.name in self.clients:
                return False
            self.clients[session.name] = session
            session.push(protocol.encode_event(protocol.CONNECTED, you=session.name))
        logger.info("%s connected (IP: %s)", session.name, session.address)
        self.notifier.fire(f"A new client has connected. Socket ID: {session.name}", session.address)
        return True

    async def on_disconnect(self, session: ClientSession) -> None:
        async with self.state.lock:
            if self.clients.get(session.name) is not session:
                return
            del self.clients[session.name]
            session.close()
        logger.info("%s disconnected", session.name)
        self.notifier.fire(f"A client has disconnected. Socket ID: {session.name}", session.address)

    async def on_send(self, session: ClientSession, message: Message) -> Optional[PendingEntry]:
        """
        Relay a message from session.

        Returns None when the message was broadcast right away, or the pending
        entry it was queued as while its media keys are uploaded.
        """
        async with self.state.lock:
            if isinstance(message.body, DirectMedia):
                self._broadcast(message)
                return None

            unresolved = []
            known = {}
            for key in extract_media_keys(message.body.text, self.state.key_pattern):
                url = self.state.media.get(key)
                if url is None:
                    unresolved.append(key)
                else:
                    known[key] = url
            if known:
                message.body.text = substitute_keys(message.body.text, known, self.state.key_pattern)

            if not unresolved:
                self._broadcast(message)
                return None

            for key in unresolved:
                session.push(protocol.encode_event(
                    protocol.REQUEST_BLOB_UPLOAD, key=key, messageId=message.id))
            entry = PendingEntry(message=message, unresolved=set(unresolved))
            self.state.pending.add(entry)
        logger.info("message %s from %s deferred on %d media key(s)", message.id, session.name, len(unresolved))
        return entry

    async def on_upload_complete(self, key: str, url: str) -> List[Message]:
        """Record key -> url and broadcast every queued message this completes."""
        async with self.state.lock:
            self.state.media.put(key, url)
            ready = self.state.pending.resolve(key, url)
            for entry in ready:
                self._broadcast(entry.message)
        logger.info("media key %s resolved to %s (%d message(s) released)", key, url, len(ready))
        return [entry.message for entry in ready]

    async def evict_expired(self, ttl: float) -> List[PendingEntry]:
        """Drop pending entries older than ttl and tell their senders, if still connected."""
        async with self.state.lock:
            expired = self.state.pending.evict_expired(ttl)
            for entry in expired:
                origin = self.clients.get(entry.sender)
                if origin is not None:
                    origin.push(protocol.encode_event(
                        protocol.MESSAGE_EXPIRED, messageId=entry.message_id,
                        keys=sorted(entry.unresolved)))
        for entry in expired:
            logger.warning("evicted message %s from %s, still waiting on %s",
                           entry.message_id, entry.sender, sorted(entry.unresolved))
        return expired

    def _broadcast(self, message: Message) -> None:
        # caller holds state.lock
        frame = protocol.encode_event(protocol.NEW_MESSAGE, message=message.to_wire())
        for session in self.clients.values():
            session.push(frame)
        logger.info("broadcast message %s from %s to %d client(s)", message.id, message.sender, len(self.clients))

    def client_names(self) -> List[str]:
        return list(self.clients.keys())
