"""HTTP + WebSocket server for the page side panel.

Routes:
    GET    /ws                         WebSocket channel (chat / abort)
    GET    /api/health
    GET    /api/conversations
    POST   /api/conversations
    GET    /api/conversations/{id}
    PATCH  /api/conversations/{id}     {"title": ...}
    DELETE /api/conversations/{id}
    GET    /api/fs/home
    GET    /api/fs/cwd
    GET    /api/fs/list?path=...

Usage:
    pagebridge --port 3456
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from aiohttp import WSMsgType, web

from pagebridge.engine.config import BridgeConfig
from pagebridge.engine.errors import InvalidConversationIdError, StorageError
from pagebridge.engine.providers.base import Provider
from pagebridge.engine.providers.claude_provider import ClaudeProvider
from pagebridge.engine.session_manager import SessionManager
from pagebridge.shared.services.persistence import ConversationStore

from .connections import ConnectionRegistry
from .frames import connected_frame
from .handler import ChatRelay

logger = logging.getLogger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, PATCH, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Credentials": "true",
}


class BridgeServer:
    """aiohttp application wiring the store, sessions and the relay."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        store: ConversationStore | None = None,
        provider: Provider | None = None,
    ) -> None:
        self._config = config or BridgeConfig()
        self._host = self._config.host
        self._port = self._config.port
        self._store = store or ConversationStore(self._config.data_dir)
        self._provider = provider or ClaudeProvider(
            self._config.agent_command,
            skip_permissions=self._config.skip_permissions,
            cwd=self._config.agent_cwd,
            terminate_timeout=self._config.terminate_timeout,
        )
        self._sessions = SessionManager(self._store, self._provider, config=self._config)
        self._connections = ConnectionRegistry()
        self._relay = ChatRelay(self._sessions, self._connections)
        self._started_at = time.time()
        self._app = web.Application(
            middlewares=[self._request_logging_middleware, self._cors_middleware],
        )
        self._setup_routes()
        logger.info(
            "BridgeServer init host=%s port=%s data_dir=%s agent=%s pid=%s",
            self._host, self._port, self._store.data_dir,
            self._provider.command, os.getpid(),
        )

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def relay(self) -> ChatRelay:
        return self._relay

    @property
    def port(self) -> int:
        return self._port

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id, exc.status, elapsed_ms,
            )
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path_qs, req_id, elapsed_ms,
            )
            raise
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "HTTP %s %s req=%s status=%s duration_ms=%.1f",
            request.method, request.path_qs, req_id,
            getattr(response, "status", "?"), elapsed_ms,
        )
        return response

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        # Local tool without auth: reflect any origin.
        if request.method == "OPTIONS":
            response: web.StreamResponse = web.Response(status=204)
        else:
            response = await handler(request)
        if isinstance(response, web.WebSocketResponse):
            return response
        origin = request.headers.get("Origin")
        response.headers["Access-Control-Allow-Origin"] = origin or "*"
        response.headers.update(_CORS_HEADERS)
        return response

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/ws", self._handle_ws)
        r.add_get("/api/health", self._handle_health)
        r.add_get("/api/conversations", self._handle_list_conversations)
        r.add_post("/api/conversations", self._handle_create_conversation)
        r.add_get("/api/conversations/{id}", self._handle_get_conversation)
        r.add_patch("/api/conversations/{id}", self._handle_update_conversation)
        r.add_delete("/api/conversations/{id}", self._handle_delete_conversation)
        r.add_get("/api/fs/home", self._handle_fs_home)
        r.add_get("/api/fs/cwd", self._handle_fs_cwd)
        r.add_get("/api/fs/list", self._handle_fs_list)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Bind host/port and serve until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(runner)
        if actual_port is not None:
            self._port = actual_port
        logger.info("Server running at http://%s:%d", self._host, self._port)
        logger.info("WebSocket available at ws://%s:%d/ws", self._host, self._port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await self.shutdown()
            await runner.cleanup()

    async def shutdown(self) -> None:
        aborted = self._sessions.abort_all()
        if aborted:
            logger.info("Aborted %d active session(s) on shutdown", aborted)
        await self._relay.shutdown()

    @staticmethod
    def _resolve_port(runner: web.AppRunner) -> int | None:
        for address in runner.addresses or ():
            if isinstance(address, tuple) and len(address) >= 2:
                return int(address[1])
        return None

    # ── WebSocket ──

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        connection_id = self._connections.add(ws)
        await self._connections.send(connection_id, connected_frame(connection_id))
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._relay.handle_text(connection_id, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await self._relay.handle_text(connection_id, msg.data.decode("utf-8", errors="replace"))
                elif msg.type == WSMsgType.ERROR:
                    logger.error("WebSocket error on %s: %s", connection_id, ws.exception())
                    break
        finally:
            self._connections.remove(connection_id)
        return ws

    # ── REST: health ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # ── REST: conversations ──

    async def _handle_list_conversations(self, request: web.Request) -> web.Response:
        try:
            conversations = await self._store.list_all()
        except StorageError as exc:
            return self._storage_error(exc)
        return web.json_response({"conversations": [c.to_dict() for c in conversations]})

    async def _handle_create_conversation(self, request: web.Request) -> web.Response:
        try:
            conversation = await self._store.create(str(uuid.uuid4()))
        except StorageError as exc:
            return self._storage_error(exc)
        return web.json_response(conversation.to_dict())

    async def _handle_get_conversation(self, request: web.Request) -> web.Response:
        try:
            conversation = await self._store.get(request.match_info["id"])
        except StorageError as exc:
            return self._storage_error(exc)
        if conversation is None:
            return web.json_response({"error": "Conversation not found"}, status=404)
        return web.json_response(conversation.to_dict())

    async def _handle_update_conversation(self, request: web.Request) -> web.Response:
        try:
            body = await request.json() if request.can_read_body else {}
        except ValueError:
            body = None
        title = body.get("title") if isinstance(body, dict) else None
        if not title or not isinstance(title, str):
            return web.json_response({"error": "Title is required"}, status=400)
        try:
            updated = await self._store.update(request.match_info["id"], title=title)
        except StorageError as exc:
            return self._storage_error(exc)
        if updated is None:
            return web.json_response({"error": "Conversation not found"}, status=404)
        return web.json_response(updated.summary().to_dict())

    async def _handle_delete_conversation(self, request: web.Request) -> web.Response:
        try:
            deleted = await self._store.delete(request.match_info["id"])
        except StorageError as exc:
            return self._storage_error(exc)
        if not deleted:
            return web.json_response({"error": "Conversation not found"}, status=404)
        return web.json_response({"success": True})

    @staticmethod
    def _storage_error(exc: StorageError) -> web.Response:
        if isinstance(exc, InvalidConversationIdError):
            return web.json_response({"error": str(exc)}, status=400)
        logger.error("Storage failure: %s", exc)
        return web.json_response({"error": str(exc), "code": exc.code}, status=500)

    # ── REST: filesystem ──

    async def _handle_fs_home(self, request: web.Request) -> web.Response:
        return web.json_response({"path": str(Path.home())})

    async def _handle_fs_cwd(self, request: web.Request) -> web.Response:
        return web.json_response({"path": os.getcwd()})

    async def _handle_fs_list(self, request: web.Request) -> web.Response:
        raw_path = request.query.get("path") or os.getcwd()
        try:
            return web.json_response(list_directory(raw_path))
        except NotADirectoryError:
            return web.json_response({"error": "Path is not a directory"}, status=400)
        except OSError as exc:
            return web.json_response({"error": f"Cannot read directory: {exc}"}, status=400)


def list_directory(raw_path: str) -> dict[str, Any]:
    """Visible entries of a directory, directories first, then by name."""
    path = Path(raw_path).expanduser().resolve()
    if not path.is_dir():
        if not path.exists():
            raise FileNotFoundError(f"No such directory: {path}")
        raise NotADirectoryError(str(path))

    entries: list[dict[str, Any]] = []
    for item in path.iterdir():
        if item.name.startswith("."):
            continue
        is_dir = item.is_dir()
        entry: dict[str, Any] = {
            "name": item.name,
            "path": str(item),
            "isDirectory": is_dir,
        }
        if not is_dir:
            try:
                entry["size"] = item.stat().st_size
            except OSError as exc:
                logger.debug("stat failed for %s: %s", item, exc)
        entries.append(entry)

    entries.sort(key=lambda e: (not e["isDirectory"], e["name"].lower(), e["name"]))
    parent = path.parent
    return {
        "path": str(path),
        "parent": str(parent) if parent != path else None,
        "entries": entries,
    }
