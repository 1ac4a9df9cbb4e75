"""
Realtime router: admins stream committed changes of a table over a WebSocket.
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from tutormarket.auth_tools import decode_access_token, is_admin
from tutormarket.database.database import Base, get_db
from tutormarket.errors import NotAuthenticated, RemoteCallFailed
from tutormarket.logger import logger
from tutormarket.realtime import ALL_TABLES, change_feed, changes

router = APIRouter(prefix='/realtime')

HEARTBEAT_SECONDS = 15.0

# Custom close codes, mirroring 401, 403 and 404
CLOSE_NOT_AUTHENTICATED = 4401
CLOSE_NOT_AUTHORIZED = 4403
CLOSE_UNKNOWN_TABLE = 4404
# Standard "try again later"
CLOSE_UNAVAILABLE = 1013

async def wait_for_disconnect(websocket: WebSocket):
    """Consume client frames until the client goes away. Clients are not expected to send anything."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return

async def forward_changes(pubsub, queue: asyncio.Queue):
    async for change in changes(pubsub):
        await queue.put(change)

@router.websocket('/{table}')
async def stream_changes(websocket: WebSocket, table: str, token: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Stream change events of one table ("*" for all) as JSON.
    A heartbeat is sent when nothing changed for a while; events missed while
    disconnected are not replayed, clients re-fetch instead.
    """
    try:
        claims = decode_access_token(token)
    except NotAuthenticated:
        await websocket.close(code=CLOSE_NOT_AUTHENTICATED)
        return
    if not is_admin(db, claims.sub):
        await websocket.close(code=CLOSE_NOT_AUTHORIZED)
        return
    if table != ALL_TABLES and table not in Base.metadata.tables:
        await websocket.close(code=CLOSE_UNKNOWN_TABLE)
        return
    db.close()

    try:
        # Subscribe before accepting so nothing committed after the handshake is missed
        async with change_feed.subscribe(table) as pubsub:
            await websocket.accept()
            logger.info(f"Admin {claims.sub} subscribed to changes of {table}")
            await relay(websocket, pubsub)
    except RemoteCallFailed:
        await websocket.close(code=CLOSE_UNAVAILABLE)
        return
    logger.info(f"Admin {claims.sub} unsubscribed from changes of {table}")

async def relay(websocket: WebSocket, pubsub):
    """Send changes and heartbeats until the client leaves or the subscription breaks."""
    queue: asyncio.Queue = asyncio.Queue()
    reader = asyncio.create_task(forward_changes(pubsub, queue))
    disconnected = asyncio.create_task(wait_for_disconnect(websocket))
    try:
        while not disconnected.done():
            next_change = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {next_change, disconnected, reader},
                timeout=HEARTBEAT_SECONDS,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if next_change in done:
                await websocket.send_json({"type": "change", **next_change.result().to_dict()})
                continue
            next_change.cancel()
            if reader in done:
                logger.error(f"Change subscription ended: {reader.exception()!r}")
                await websocket.close(code=CLOSE_UNAVAILABLE)
                return
            if not done:
                await websocket.send_json({"type": "heartbeat"})
    except WebSocketDisconnect:
        pass
    finally:
        for task in (reader, disconnected):
            task.cancel()
        await asyncio.gather(reader, disconnected, return_exceptions=True)
