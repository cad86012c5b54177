"""
Dealership registration and approval workflow.

States: pending -> approved, pending -> rejected, rejected -> pending (resubmission).
Every transition is a check-and-set on dealerships.version.
"""
from datetime import datetime
from typing import Optional, Dict, Any, Tuple

from sqlalchemy import or_, func
from sqlalchemy.orm import Session
import structlog

from ..db import commit_versioned
from ..models.models import Dealership, Profile, Car, BUSINESS_TYPES, DEALERSHIP_TYPES
from .audit import log_admin_action, compute_diff
from .errors import NotFound, Conflict, InvalidTransition, StaleWriteError, ValidationFailed
from .notifications import notify


log = structlog.get_logger(__name__)

REVIEW_FIELDS = ("status", "reviewer_id", "review_notes", "reviewed_at")
EDITABLE_FIELDS = (
    "business_name",
    "business_name_ar",
    "owner_name",
    "email",
    "phone",
    "description",
    "description_ar",
    "location",
    "location_ar",
    "business_type",
    "dealership_type",
    "logo_url",
    "country_id",
    "city_id",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def dealership_to_dict(d: Dealership) -> Dict[str, Any]:
    return {
        "id": d.id,
        "user_id": str(d.user_id),
        "business_name": d.business_name,
        "business_name_ar": d.business_name_ar,
        "owner_name": d.owner_name,
        "email": d.email,
        "phone": d.phone,
        "description": d.description,
        "description_ar": d.description_ar,
        "location": d.location,
        "location_ar": d.location_ar,
        "business_type": d.business_type,
        "dealership_type": d.dealership_type,
        "logo_url": d.logo_url,
        "country_id": d.country_id,
        "city_id": d.city_id,
        "status": d.status,
        "is_featured": bool(d.is_featured),
        "reviewer_id": str(d.reviewer_id) if d.reviewer_id else None,
        "review_notes": d.review_notes,
        "reviewed_at": _iso(d.reviewed_at),
        "submitted_at": _iso(d.submitted_at),
        "created_at": _iso(d.created_at),
        "updated_at": _iso(d.updated_at),
        "version": d.version,
    }


def _review_state(d: Dealership) -> Dict[str, Any]:
    return {
        "status": d.status,
        "reviewer_id": str(d.reviewer_id) if d.reviewer_id else None,
        "review_notes": d.review_notes,
        "reviewed_at": _iso(d.reviewed_at),
        "is_featured": bool(d.is_featured),
    }


def _validate_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Unknown dealership fields: {', '.join(sorted(unknown))}")
    if "business_type" in fields and fields["business_type"] not in BUSINESS_TYPES:
        raise ValidationFailed("Invalid business_type")
    if "dealership_type" in fields and fields["dealership_type"] not in DEALERSHIP_TYPES:
        raise ValidationFailed("Invalid dealership_type")
    if "business_name" in fields and not (fields["business_name"] or "").strip():
        raise ValidationFailed("business_name is required")
    return fields


def _check_version(d: Dealership, expected_version: Optional[int]) -> None:
    if expected_version is not None and d.version != expected_version:
        raise StaleWriteError("Dealership", d.id)


def get_dealership(db: Session, dealership_id: int) -> Dealership:
    d = db.query(Dealership).filter(Dealership.id == dealership_id).first()
    if not d:
        raise NotFound("Dealership not found")
    return d


def latest_registration(db: Session, user_id) -> Optional[Dealership]:
    return (
        db.query(Dealership)
        .filter(Dealership.user_id == user_id)
        .order_by(Dealership.created_at.desc(), Dealership.id.desc())
        .first()
    )


def get_approved_dealership_for_user(db: Session, user_id) -> Optional[Dealership]:
    return (
        db.query(Dealership)
        .filter(Dealership.user_id == user_id, Dealership.status == "approved")
        .order_by(Dealership.created_at.desc(), Dealership.id.desc())
        .first()
    )


def submit_registration(db: Session, user: Profile, fields: Dict[str, Any]) -> Tuple[Dealership, bool]:
    """
    Insert a pending registration, or reopen the caller's rejected one.

    Returns (dealership, created). A rejected latest row is updated in place
    with its review fields cleared; a pending or approved row blocks the call.
    """
    fields = _validate_fields(dict(fields))
    latest = latest_registration(db, user.id)
    if latest is not None and latest.status in ("pending", "approved"):
        raise Conflict(f"A {latest.status} dealership registration already exists")

    now = datetime.utcnow()
    if latest is not None and latest.status == "rejected":
        for key, value in fields.items():
            setattr(latest, key, value)
        latest.status = "pending"
        latest.reviewer_id = None
        latest.review_notes = None
        latest.reviewed_at = None
        latest.submitted_at = now
        commit_versioned(db, "Dealership", latest.id)
        db.refresh(latest)
        log.info("dealership_resubmitted", dealership_id=latest.id, user_id=str(user.id))
        return latest, False

    if not fields.get("business_name"):
        raise ValidationFailed("business_name is required")
    d = Dealership(user_id=user.id, status="pending", submitted_at=now, **fields)
    db.add(d)
    db.commit()
    db.refresh(d)
    log.info("dealership_submitted", dealership_id=d.id, user_id=str(user.id))
    return d, True


def update_details(
    db: Session,
    d: Dealership,
    fields: Dict[str, Any],
    actor: Profile,
    expected_version: Optional[int] = None,
) -> Dealership:
    """Edit business metadata without touching the review state."""
    fields = _validate_fields(dict(fields))
    _check_version(d, expected_version)
    before = {k: getattr(d, k) for k in fields}
    for key, value in fields.items():
        setattr(d, key, value)
    if actor.role == "admin" and actor.id != d.user_id:
        log_admin_action(db, actor.id, "update_dealership", "dealerships", d.id, compute_diff(before, fields))
    commit_versioned(db, "Dealership", d.id)
    db.refresh(d)
    return d


def _review(
    db: Session,
    dealership_id: int,
    reviewer_id,
    notes: Optional[str],
    target: str,
    expected_version: Optional[int],
) -> Dealership:
    d = get_dealership(db, dealership_id)
    _check_version(d, expected_version)
    if d.status != "pending":
        raise InvalidTransition("dealership", d.status, target)

    before = _review_state(d)
    d.status = target
    d.reviewer_id = reviewer_id
    d.review_notes = notes
    d.reviewed_at = datetime.utcnow()

    owner = db.query(Profile).filter(Profile.id == d.user_id).first()
    if target == "approved":
        if owner is not None and owner.role == "normal_user":
            owner.role = "dealer"
        notify(
            db,
            d.user_id,
            "Dealership approved",
            f"Your dealership {d.business_name} has been approved.",
            "dealership_approved",
            link="/dealer/dashboard",
        )
    else:
        message = f"Your dealership {d.business_name} was not approved."
        if notes:
            message = f"{message} Notes: {notes}"
        notify(db, d.user_id, "Dealership rejected", message, "dealership_rejected", link="/dealership/register")

    action = "approve_dealership" if target == "approved" else "reject_dealership"
    log_admin_action(db, reviewer_id, action, "dealerships", d.id, compute_diff(before, _review_state(d)))
    commit_versioned(db, "Dealership", d.id)
    db.refresh(d)
    log.info(f"dealership_{target}", dealership_id=d.id, reviewer_id=str(reviewer_id))
    return d


def approve(db: Session, dealership_id: int, reviewer_id, notes: Optional[str] = None, expected_version: Optional[int] = None) -> Dealership:
    return _review(db, dealership_id, reviewer_id, notes, "approved", expected_version)


def reject(db: Session, dealership_id: int, reviewer_id, notes: Optional[str] = None, expected_version: Optional[int] = None) -> Dealership:
    return _review(db, dealership_id, reviewer_id, notes, "rejected", expected_version)


def toggle_featured(db: Session, dealership_id: int, admin_id, expected_version: Optional[int] = None) -> Dealership:
    d = get_dealership(db, dealership_id)
    _check_version(d, expected_version)
    d.is_featured = not bool(d.is_featured)
    log_admin_action(
        db, admin_id, "toggle_featured_dealership", "dealerships", d.id,
        {"is_featured": {"before": not d.is_featured, "after": d.is_featured}},
    )
    commit_versioned(db, "Dealership", d.id)
    db.refresh(d)
    return d


def delete_dealership(db: Session, dealership_id: int, admin_id) -> Dict[str, Any]:
    """Remove a registration with no listings; returns the last known row."""
    d = get_dealership(db, dealership_id)
    if db.query(Car.id).filter(Car.dealership_id == d.id).first():
        raise Conflict("Dealership still has car listings")
    record = dealership_to_dict(d)
    log_admin_action(db, admin_id, "delete_dealership", "dealerships", d.id, {"business_name": d.business_name})
    db.delete(d)
    commit_versioned(db, "Dealership", dealership_id)
    return record


def list_requests(
    db: Session,
    status: Optional[str] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
):
    query = db.query(Dealership, Profile).join(Profile, Profile.id == Dealership.user_id)
    if status:
        query = query.filter(Dealership.status == status)
    if q:
        like = f"%{q}%"
        query = query.filter(
            or_(
                Dealership.business_name.ilike(like),
                Dealership.business_name_ar.ilike(like),
                Profile.email.ilike(like),
                Profile.full_name.ilike(like),
            )
        )
    total = query.with_entities(func.count(Dealership.id)).scalar() or 0
    rows = (
        query.order_by(Dealership.created_at.desc(), Dealership.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
