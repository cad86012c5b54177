import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_admin
from ..models.models import Profile, Dealership, Car, CarReport, ContactMessage, Brand, CarModel
from ..schemas.admin import RoleUpdate, ActiveUpdate, ReportStatusUpdate
from ..schemas.cars import ModerationRequest
from ..schemas.dealerships import VersionedRequest
from ..schemas.inbox import ContactReplyCreate, ContactStatusUpdate
from ..services import inbox, listings
from ..services.audit import log_admin_action, list_admin_logs
from ..services.errors import NotFound, Forbidden
from .reports import report_to_dict


router = APIRouter(prefix="/admin", tags=["admin"])


def _paged(items, total: int, page: int, limit: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


def _clamp(page: int, limit: int, max_limit: int = 100):
    return max(1, page), min(max(1, limit), max_limit)


def _user(p: Profile) -> dict:
    return {
        "id": str(p.id),
        "email": p.email,
        "full_name": p.full_name,
        "phone_number": p.phone_number,
        "role": p.role,
        "is_active": bool(p.is_active),
        "country_id": p.country_id,
        "city_id": p.city_id,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "last_login_at": p.last_login_at.isoformat() if p.last_login_at else None,
    }


def _get_profile(db: Session, user_id: str) -> Profile:
    try:
        uid = uuid.UUID(str(user_id))
    except ValueError:
        raise NotFound("User not found")
    p = db.query(Profile).filter(Profile.id == uid).first()
    if not p:
        raise NotFound("User not found")
    return p


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    def by_status(column, pk):
        return {s: int(n) for s, n in db.query(column, func.count(pk)).group_by(column).all()}

    return {
        "users": db.query(func.count(Profile.id)).scalar() or 0,
        "dealers": db.query(func.count(Profile.id)).filter(Profile.role == "dealer").scalar() or 0,
        "dealerships": by_status(Dealership.status, Dealership.id),
        "cars": by_status(Car.status, Car.id),
        "pending_reports": db.query(func.count(CarReport.id)).filter(CarReport.status == "pending").scalar() or 0,
        "unread_messages": db.query(func.count(ContactMessage.id))
        .filter(ContactMessage.status == "unread", ContactMessage.parent_message_id.is_(None))
        .scalar()
        or 0,
    }


# Users -----------------------------------------------------------------------

@router.get("/users")
def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: Profile = Depends(require_admin),
):
    page, limit = _clamp(page, limit, 200)
    query = db.query(Profile)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Profile.email.ilike(like), Profile.full_name.ilike(like), Profile.phone_number.ilike(like)))
    if role:
        query = query.filter(Profile.role == role)
    total = query.count()
    rows = query.order_by(Profile.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return _paged([_user(p) for p in rows], total, page, limit)


@router.patch("/users/{user_id}/role")
def set_role(user_id: str, payload: RoleUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    p = _get_profile(db, user_id)
    if p.id == admin.id and payload.role != "admin":
        raise Forbidden("Admins cannot demote themselves")
    before = p.role
    if before != payload.role:
        p.role = payload.role
        log_admin_action(db, admin.id, "update_user_role", "profiles", p.id, {"role": {"before": before, "after": payload.role}})
        db.commit()
        db.refresh(p)
    return _user(p)


@router.patch("/users/{user_id}/active")
def set_active(user_id: str, payload: ActiveUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    p = _get_profile(db, user_id)
    if p.id == admin.id and not payload.is_active:
        raise Forbidden("Admins cannot deactivate themselves")
    before = bool(p.is_active)
    if before != payload.is_active:
        p.is_active = payload.is_active
        log_admin_action(db, admin.id, "update_user_active", "profiles", p.id, {"is_active": {"before": before, "after": payload.is_active}})
        db.commit()
        db.refresh(p)
    return _user(p)


# Cars ------------------------------------------------------------------------

@router.get("/cars")
def list_cars(
    status: Optional[str] = Query(default=None, pattern="^(Pending|Approved|Rejected|Sold)$"),
    q: Optional[str] = None,
    dealership_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    _: Profile = Depends(require_admin),
):
    page, limit = _clamp(page, limit)
    query = db.query(Car)
    if status:
        query = query.filter(Car.status == status)
    if dealership_id:
        query = query.filter(Car.dealership_id == dealership_id)
    if q:
        like = f"%{q}%"
        brand_ids = db.query(Brand.id).filter(Brand.name.ilike(like)).scalar_subquery()
        model_ids = db.query(CarModel.id).filter(CarModel.name.ilike(like)).scalar_subquery()
        query = query.filter(or_(Car.description.ilike(like), Car.brand_id.in_(brand_ids), Car.model_id.in_(model_ids)))
    total = query.count()
    rows = query.order_by(Car.created_at.desc(), Car.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return _paged([listings.car_to_dict(c) for c in rows], total, page, limit)


@router.post("/cars/{car_id}/moderate")
def moderate_car(car_id: int, payload: ModerationRequest, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    car = listings.moderate(db, car_id, admin, payload.status, payload.notes, expected_version=payload.expected_version)
    return listings.car_to_dict(car)


@router.post("/cars/{car_id}/feature")
def feature_car(car_id: int, payload: VersionedRequest, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    car = listings.toggle_featured(db, car_id, admin, expected_version=payload.expected_version)
    return listings.car_to_dict(car)


# Logs ------------------------------------------------------------------------

@router.get("/logs")
def admin_logs(
    table_name: Optional[str] = None,
    record_id: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: Profile = Depends(require_admin),
):
    page, limit = _clamp(page, limit, 200)
    rows = list_admin_logs(db, table_name=table_name, record_id=record_id, limit=limit, offset=(page - 1) * limit)
    return [
        {
            "id": r.id,
            "admin_id": str(r.admin_id) if r.admin_id else None,
            "action_type": r.action_type,
            "table_name": r.table_name,
            "record_id": r.record_id,
            "changes": r.changes,
            "integrity_hash": r.integrity_hash,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]


# Reports ---------------------------------------------------------------------

@router.get("/reports")
def list_reports(
    status: Optional[str] = Query(default=None, pattern="^(pending|reviewed|resolved|dismissed)$"),
    country_code: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    _: Profile = Depends(require_admin),
):
    page, limit = _clamp(page, limit)
    query = db.query(CarReport)
    if status:
        query = query.filter(CarReport.status == status)
    if country_code:
        query = query.filter(CarReport.country_code == country_code.lower())
    total = query.count()
    rows = query.order_by(CarReport.created_at.desc(), CarReport.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return _paged([report_to_dict(r) for r in rows], total, page, limit)


@router.patch("/reports/{report_id}")
def update_report(report_id: int, payload: ReportStatusUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    r = db.query(CarReport).filter(CarReport.id == report_id).first()
    if not r:
        raise NotFound("Report not found")
    before = r.status
    r.status = payload.status
    log_admin_action(
        db, admin.id, "update_report_status", "car_reports", r.id,
        {"status": {"before": before, "after": payload.status}, "notes": payload.notes},
    )
    db.commit()
    db.refresh(r)
    return report_to_dict(r)


# Contact messages ------------------------------------------------------------

@router.get("/messages")
def list_messages(
    status: Optional[str] = Query(default=None, pattern="^(unread|read)$"),
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    _: Profile = Depends(require_admin),
):
    page, limit = _clamp(page, limit)
    rows, total = inbox.list_contact_messages(db, status=status, page=page, limit=limit)
    items = []
    for m in rows:
        item = inbox.thread_item(m).model_dump(mode="json")
        item["user_id"] = str(m.user_id) if m.user_id else None
        item["phone"] = m.phone
        items.append(item)
    return _paged(items, total, page, limit)


@router.patch("/messages/{message_id}")
def set_message_status(message_id: int, payload: ContactStatusUpdate, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    m = inbox.set_message_status(db, message_id, payload.status)
    return {"id": m.id, "status": m.status}


@router.delete("/messages/{message_id}")
def delete_message(message_id: int, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    inbox.delete_message(db, message_id)
    return {"status": "ok"}


@router.post("/messages/{message_id}/reply")
def reply_message(message_id: int, payload: ContactReplyCreate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    child = inbox.reply(db, admin, message_id, payload.message)
    return {"id": child.id, "parent_message_id": child.parent_message_id, "message": child.message}
