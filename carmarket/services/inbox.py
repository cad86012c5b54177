"""
User inbox: system notifications and contact-message threads merged into
one newest-first feed of tagged items.

Replies never appear at the top level; they nest under their parent.
Read/unread mutations only apply to notifications.
"""
from typing import List, Optional, Dict, Any

from sqlalchemy import func
from sqlalchemy.orm import Session
import structlog

from ..models.models import Notification, ContactMessage, Profile
from ..schemas.inbox import NotificationItem, MessageThread, MessageReply
from .errors import NotFound, ValidationFailed
from .notifications import notify


log = structlog.get_logger(__name__)

INBOX_FILTERS = ("all", "unread", "read")


def _notification_item(n: Notification) -> NotificationItem:
    return NotificationItem(
        id=n.id,
        title=n.title,
        message=n.message,
        type=n.type,
        link=n.link,
        is_read=bool(n.is_read),
        created_at=n.created_at,
    )


def _reply_item(m: ContactMessage) -> MessageReply:
    return MessageReply(
        id=m.id,
        message=m.message,
        name=m.name,
        sender_id=str(m.sender_id) if m.sender_id else None,
        created_at=m.created_at,
    )


def thread_item(m: ContactMessage) -> MessageThread:
    return MessageThread(
        id=m.id,
        subject=m.subject,
        message=m.message,
        name=m.name,
        email=m.email,
        status=m.status,
        is_read=m.status == "read",
        created_at=m.created_at,
        replies=[_reply_item(r) for r in m.replies],
    )


def list_inbox(db: Session, user_id, filter: str = "all") -> List[Any]:
    if filter not in INBOX_FILTERS:
        raise ValidationFailed("Invalid inbox filter")

    nq = db.query(Notification).filter(Notification.user_id == user_id)
    mq = db.query(ContactMessage).filter(
        ContactMessage.user_id == user_id,
        ContactMessage.parent_message_id.is_(None),
    )
    if filter == "unread":
        nq = nq.filter(Notification.is_read.is_(False))
        mq = mq.filter(ContactMessage.status == "unread")
    elif filter == "read":
        nq = nq.filter(Notification.is_read.is_(True))
        mq = mq.filter(ContactMessage.status == "read")

    items: List[Any] = [_notification_item(n) for n in nq.all()]
    items.extend(thread_item(m) for m in mq.all())
    items.sort(key=lambda i: (i.created_at, i.id), reverse=True)
    return items


def unread_count(db: Session, user_id) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .scalar()
        or 0
    )


def _own_notification(db: Session, user_id, notification_id: int) -> Notification:
    n = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not n:
        raise NotFound("Notification not found")
    return n


def mark_read(db: Session, user_id, notification_id: int) -> Notification:
    n = _own_notification(db, user_id, notification_id)
    n.is_read = True
    db.commit()
    db.refresh(n)
    return n


def mark_all_read(db: Session, user_id) -> int:
    """Idempotent: only unread rows are touched and none is ever flipped back."""
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return int(updated or 0)


def delete_notification(db: Session, user_id, notification_id: int) -> None:
    n = _own_notification(db, user_id, notification_id)
    db.delete(n)
    db.commit()


# Contact form ---------------------------------------------------------------

def submit_contact_message(db: Session, user: Optional[Profile], fields: Dict[str, Any]) -> ContactMessage:
    msg = ContactMessage(
        user_id=user.id if user else None,
        sender_id=user.id if user else None,
        name=fields["name"],
        email=fields["email"],
        phone=fields.get("phone"),
        subject=fields.get("subject"),
        message=fields["message"],
        status="unread",
    )
    db.add(msg)
    db.commit()
    db.refresh(msg)
    log.info("contact_message_received", message_id=msg.id, signed_in=user is not None)
    return msg


def get_message(db: Session, message_id: int) -> ContactMessage:
    msg = db.query(ContactMessage).filter(ContactMessage.id == message_id).first()
    if not msg:
        raise NotFound("Message not found")
    return msg


def list_contact_messages(db: Session, status: Optional[str] = None, page: int = 1, limit: int = 20):
    query = db.query(ContactMessage).filter(ContactMessage.parent_message_id.is_(None))
    if status:
        query = query.filter(ContactMessage.status == status)
    total = query.with_entities(func.count(ContactMessage.id)).scalar() or 0
    rows = (
        query.order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def set_message_status(db: Session, message_id: int, status: str) -> ContactMessage:
    msg = get_message(db, message_id)
    msg.status = status
    db.commit()
    db.refresh(msg)
    return msg


def delete_message(db: Session, message_id: int) -> None:
    """Deletes the message together with its replies."""
    msg = get_message(db, message_id)
    db.delete(msg)
    db.commit()


def reply(db: Session, admin: Profile, message_id: int, text: str) -> ContactMessage:
    parent = get_message(db, message_id)
    # Threads are one level deep; a reply to a reply attaches to the root
    if parent.parent_message_id is not None:
        parent = get_message(db, parent.parent_message_id)

    child = ContactMessage(
        user_id=parent.user_id,
        sender_id=admin.id,
        name=admin.full_name or "Support",
        email=admin.email,
        subject=f"Re: {parent.subject}" if parent.subject else None,
        message=text,
        status="unread",
        parent_message_id=parent.id,
    )
    db.add(child)
    if parent.user_id is not None:
        notify(
            db,
            parent.user_id,
            "New reply to your message",
            text if len(text) <= 200 else text[:197] + "...",
            "contact_reply",
            link="/messages",
        )
    db.commit()
    db.refresh(child)
    log.info("contact_message_replied", message_id=parent.id, reply_id=child.id)
    return child
