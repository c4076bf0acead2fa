from typing import Optional
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from friendgraph.core import security
from friendgraph.core.exceptions import ChannelError
from friendgraph.modules.friendships.services.status import RelationshipSnapshot
from friendgraph.modules.realtime.synchronizer import RealtimeSynchronizer, store_snapshot_fetcher

router = APIRouter()
logger = logging.getLogger(__name__)

@router.websocket("/ws")
async def friends_websocket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Live relationship snapshot for the token's user.

    The server pushes {"type": "snapshot", ...} after the initial fetch and
    after every change. Clients may send {"type": "status", "user_id": ...}
    to get the cached status of one user back.
    """
    user_id = security.verify_access_token(token) if token else None
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def push_snapshot(snapshot: RelationshipSnapshot) -> None:
        await websocket.send_json({"type": "snapshot", **snapshot.as_dict()})

    synchronizer = RealtimeSynchronizer(
        user_id,
        websocket.app.state.change_broker,
        store_snapshot_fetcher(websocket.app.state.session_factory),
        on_change=push_snapshot,
    )
    try:
        async with synchronizer:
            while True:
                message = await websocket.receive_json()
                if message.get("type") != "status" or not message.get("user_id"):
                    await websocket.send_json({"type": "error", "detail": "Unsupported message"})
                    continue
                target_id = str(message["user_id"])
                await websocket.send_json({
                    "type": "status",
                    "user_id": target_id,
                    "status": synchronizer.get_status_for_user(target_id).value,
                    "request_id": synchronizer.snapshot.request_id_for(target_id),
                })
    except WebSocketDisconnect:
        logger.info(f"Realtime client for {user_id} disconnected")
    except ChannelError as e:
        logger.error(f"Realtime session for {user_id} could not start: {e.detail}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
