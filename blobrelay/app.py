import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError

from common import protocol
from blobrelay.blob_store import (
    PUBLIC, BlobStore, BlobStoreError, InvalidFileNameError, InvalidScopeError, guess_ext, parse_scopes,
)
from blobrelay.config import Settings
from blobrelay.hub import ClientSession, ConnectionHub
from blobrelay.lifecycle import FileLifecycleManager
from blobrelay.models import Message, MessageIn, UploadResult
from blobrelay.notify import NotificationSink
from blobrelay.state import RelayState

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    state = RelayState(settings.media_key_pattern)
    notifier = NotificationSink(settings.notify_webhook_url, timeout=settings.notify_timeout_s)
    hub = ConnectionHub(state, notifier)
    store = BlobStore(settings.public_dir, settings.archive_dir, url_for=settings.file_url)
    lifecycle = FileLifecycleManager(
        store, state, settings.file_url,
        hub=hub,
        interval=settings.sweep_interval_s,
        max_age=settings.max_file_age_s,
        pending_ttl=settings.pending_ttl_s,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        lifecycle.start()
        try:
            yield
        finally:
            await lifecycle.stop()
            await notifier.drain()

    app = FastAPI(title="blobrelay", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.relay = state
    app.state.hub = hub
    app.state.store = store
    app.state.lifecycle = lifecycle
    app.state.notifier = notifier

    async def _notify_route(request: Request, body: str, failure: str):
        client_ip = request.client.host if request.client else None
        try:
            response = await notifier.notify(body, client_ip)
        except Exception as e:
            logger.error("notification for %s failed: %s", request.url.path, e)
            return JSONResponse({'success': False, 'error': failure}, status_code=500)
        return JSONResponse({'success': True, 'message': body, 'response': response, 'ip': client_ip})

    @app.get("/")
    async def index(request: Request):
        return await _notify_route(request, "Hello from server!", "Something went wrong")

    @app.get("/notify")
    async def notify(request: Request):
        return await _notify_route(request, "Manual notification triggered via GET /notify",
                                   "Failed to send notification")

    @app.get("/website")
    async def website(request: Request):
        return await _notify_route(request, "Someone entered the website /website",
                                   "Failed to send notification")

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        # client connects with ?name=...
        await websocket.accept()
        name = websocket.query_params.get('name') or f'anon-{id(websocket)}'
        address = websocket.client.host if websocket.client else None
        session = ClientSession(name, websocket, address)
        if not await hub.on_connect(session):
            await websocket.send_text(protocol.error_event('name taken'))
            await websocket.close()
            return
        pump = asyncio.create_task(session.pump())

        try:
            while True:
                event = await websocket.receive()
                if event['type'] == 'websocket.disconnect':
                    raise WebSocketDisconnect(event.get('code', 1000))
                text = event.get('text')
                if text is None:
                    session.push(protocol.error_event('expected text frame'))
                    continue
                try:
                    frame = protocol.decode_event(text)
                except protocol.ProtocolError as e:
                    session.push(protocol.error_event(str(e)))
                    continue
                mtype = frame['type']
                if mtype == protocol.SEND_MESSAGE:
                    try:
                        payload = MessageIn.model_validate(frame.get('message') or {})
                    except ValidationError:
                        session.push(protocol.error_event('invalid message'))
                        continue
                    await hub.on_send(session, Message.from_wire(payload, session.name))
                elif mtype == protocol.BLOB_UPLOAD_COMPLETE:
                    key, url = frame.get('key'), frame.get('url')
                    if not isinstance(key, str) or not key or not isinstance(url, str) or not url:
                        session.push(protocol.error_event('blobUploadComplete needs key and url'))
                        continue
                    await hub.on_upload_complete(key, url)
                else:
                    session.push(protocol.error_event('unknown type'))
        except WebSocketDisconnect:
            pass
        finally:
            await hub.on_disconnect(session)
            await pump

    @app.post("/upload", response_model=UploadResult)
    async def upload(file: Optional[UploadFile] = File(None), key: Optional[str] = Form(None)):
        if not key or not key.strip():
            return JSONResponse({'error': 'missing key'}, status_code=400)
        if file is None:
            return JSONResponse({'error': 'missing file'}, status_code=400)
        data = await file.read()
        if not data:
            return JSONResponse({'error': 'empty file'}, status_code=400)

        ext = guess_ext(file.filename, file.content_type)
        try:
            path = await asyncio.to_thread(store.save, data, ext)
        except BlobStoreError as e:
            logger.error("upload for %s failed: %s", key, e)
            return JSONResponse({'error': 'storage unavailable'}, status_code=500)

        url = settings.file_url(path.name)
        await hub.on_upload_complete(key, url)
        return UploadResult(key=key, url=url, name=path.name, size=len(data))

    @app.get("/files/{name}")
    async def get_file(name: str):
        try:
            path = store.public_file(name)
        except InvalidFileNameError:
            path = None
        if path is None:
            return JSONResponse({'error': 'not found'}, status_code=404)
        return FileResponse(path=str(path), filename=path.name)

    @app.get("/admin/files")
    async def list_files(scope: str = 'all'):
        try:
            scopes = parse_scopes(scope)
            files = {s: [f.model_dump() for f in store.list(s)] for s in scopes}
        except InvalidScopeError as e:
            return JSONResponse({'error': str(e)}, status_code=400)
        except BlobStoreError as e:
            return JSONResponse({'error': str(e)}, status_code=500)
        return JSONResponse({'files': files})

    async def _forget_public(name: str) -> None:
        async with state.lock:
            state.media.invalidate_by_url(settings.file_url(name))

    @app.delete("/admin/files")
    async def delete_files(scope: str = 'all'):
        try:
            scopes = parse_scopes(scope)
        except InvalidScopeError as e:
            return JSONResponse({'error': str(e)}, status_code=400)
        results = {}
        for s in scopes:
            try:
                results[s] = store.delete_all(s)
            except BlobStoreError as e:
                logger.error("bulk delete of %s failed: %s", s, e)
                results[s] = {'deleted': [], 'errors': [{'name': None, 'error': str(e)}]}
                continue
            if s == PUBLIC:
                for name in results[s]['deleted']:
                    await _forget_public(name)
        logger.info("admin bulk delete: %s", {s: len(r['deleted']) for s, r in results.items()})
        return JSONResponse({'results': results})

    @app.delete("/admin/files/{scope}/{name}")
    async def delete_file(scope: str, name: str):
        s = scope.strip().lower()
        try:
            store.delete(s, name)
        except (InvalidScopeError, InvalidFileNameError) as e:
            return JSONResponse({'error': str(e)}, status_code=400)
        except BlobStoreError as e:
            return JSONResponse({'error': str(e)}, status_code=404)
        if s == PUBLIC:
            await _forget_public(name)
        logger.info("admin deleted %s/%s", s, name)
        return JSONResponse({'deleted': name, 'scope': s})

    @app.get('/clients')
    async def list_clients():
        async with state.lock:
            names = hub.client_names()
        return JSONResponse({'clients': names})

    @app.get('/pending')
    async def list_pending():
        async with state.lock:
            entries = [
                {'messageId': e.message_id, 'sender': e.sender, 'waitingOn': sorted(e.unresolved)}
                for e in state.pending
            ]
            resolved = len(state.media)
        return JSONResponse({'pending': entries, 'resolvedKeys': resolved})

    return app
