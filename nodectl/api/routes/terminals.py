import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from nodectl.api.middleware import resolve_caller
from nodectl.api.routes import get_caller, get_services
from nodectl.modules.errors import NodectlError
from nodectl.modules.terminal import TransportClosed

logger = logging.getLogger("api.terminals")

router = APIRouter()


class TerminalRequest(BaseModel):
    node_id: str
    cols: int = 80
    rows: int = 24


class WebSocketTransport:
    """Blocking facade over a websocket, usable from worker threads."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self.loop = loop
        self.closed = False

    def _call(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

    def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            raise TransportClosed("websocket closed")
        try:
            self._call(self.websocket.send_json(message))
        except (WebSocketDisconnect, RuntimeError) as e:
            self.closed = True
            raise TransportClosed(str(e)) from e

    def receive(self) -> Optional[Dict[str, Any]]:
        if self.closed:
            return None
        try:
            return self._call(self.websocket.receive_json())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Websocket receive ended: {e}")
            self.closed = True
            return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._call(self.websocket.close())
        except RuntimeError as e:
            raise TransportClosed(str(e)) from e


@router.post("/terminals", status_code=201)
def open_terminal(req: TerminalRequest, caller=Depends(get_caller), services=Depends(get_services)):
    endpoint = services.nodes.endpoint_for(caller, req.node_id)
    session = services.terminals.open(req.node_id, endpoint, caller.account_id, req.cols, req.rows)
    return session.to_dict()


@router.get("/terminals")
def list_terminals(caller=Depends(get_caller), services=Depends(get_services)):
    return [s.to_dict() for s in services.terminals.list(caller.account_id)]


@router.get("/terminals/{session_id}")
def get_terminal(session_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return services.terminals.get(session_id, caller.account_id).to_dict()


@router.delete("/terminals/{session_id}", status_code=204)
def stop_terminal(session_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    services.terminals.stop(session_id, caller.account_id)


@router.websocket("/terminals/{session_id}/ws")
async def attach_terminal(websocket: WebSocket, session_id: str, token: str = ""):
    services = websocket.app.state.services
    caller = resolve_caller(services, token)
    if caller is None:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    transport = WebSocketTransport(websocket, asyncio.get_running_loop())
    try:
        status = await run_in_threadpool(
            services.terminals.attach, session_id, caller.account_id, transport
        )
        logger.info(f"Terminal {session_id[:8]} attachment ended: {status.value}")
    except NodectlError as e:
        logger.info(f"Terminal {session_id[:8]} attach refused: {e}")
        if not transport.closed:
            await websocket.send_json({"type": "error", "data": str(e)})
            await websocket.close(code=4403)
