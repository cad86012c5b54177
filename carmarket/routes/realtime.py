from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import user_from_token
from ..models.models import Dealership
from ..services.dealerships import dealership_to_dict
from ..services.realtime import feed


router = APIRouter(tags=["realtime"])
log = structlog.get_logger(__name__)


@router.websocket("/ws/admin/dealerships")
async def ws_admin_dealerships(websocket: WebSocket, token: Optional[str] = None, db: Session = Depends(get_db)):
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user = user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=4401)
        return
    if user.role != "admin":
        await websocket.close(code=4403)
        return

    # Database rows older than anything already pushed are dropped by the reducer
    feed.prime(dealership_to_dict(d) for d in db.query(Dealership).all())

    await websocket.accept()
    await feed.subscribe(websocket)
    log.info("feed_subscribed", user_id=str(user.id))
    try:
        await websocket.send_json({"event": "snapshot", "data": feed.snapshot()})
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await feed.unsubscribe(websocket)
        log.info("feed_unsubscribed", user_id=str(user.id))
