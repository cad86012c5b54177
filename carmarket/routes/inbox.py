from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user, get_optional_user
from ..models.models import Profile
from ..schemas.inbox import InboxResponse, ContactMessageCreate
from ..services import inbox as svc


router = APIRouter(prefix="/inbox", tags=["inbox"])
contact_router = APIRouter(prefix="/contact", tags=["contact"])


@router.get("", response_model=InboxResponse)
def list_inbox(
    filter: str = Query(default="all", pattern="^(all|unread|read)$"),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_user),
):
    return InboxResponse(items=svc.list_inbox(db, me.id, filter), unread=svc.unread_count(db, me.id))


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    return {"unread": svc.unread_count(db, me.id)}


@router.post("/notifications/read-all")
def mark_all_read(db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    return {"updated": svc.mark_all_read(db, me.id)}


@router.post("/notifications/{notification_id}/read")
def mark_read(notification_id: int, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    n = svc.mark_read(db, me.id, notification_id)
    return {"id": n.id, "is_read": n.is_read}


@router.delete("/notifications/{notification_id}")
def delete_notification(notification_id: int, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    svc.delete_notification(db, me.id, notification_id)
    return {"status": "ok"}


@contact_router.post("")
def submit_contact(
    payload: ContactMessageCreate,
    db: Session = Depends(get_db),
    me: Optional[Profile] = Depends(get_optional_user),
):
    msg = svc.submit_contact_message(db, me, payload.model_dump())
    return {"id": msg.id, "status": msg.status}
