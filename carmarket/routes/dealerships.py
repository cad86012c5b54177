from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, require_admin
from ..models.models import Profile
from ..schemas.dealerships import DealershipSubmit, DealershipUpdate, ReviewRequest, VersionedRequest
from ..services import dealerships as svc
from ..services.errors import NotFound, Forbidden
from ..services.realtime import feed, ChangeEvent, publish_change, INSERT, UPDATE, DELETE
from ..storage.provider import StorageProvider
from ..storage.uploads import get_storage, store_image


router = APIRouter(prefix="/dealerships", tags=["dealerships"])
admin_router = APIRouter(prefix="/admin/dealerships", tags=["admin"])


def _owner_summary(p: Optional[Profile]) -> Optional[dict]:
    if p is None:
        return None
    return {"id": str(p.id), "email": p.email, "full_name": p.full_name, "phone_number": p.phone_number}


@router.post("")
def submit_registration(payload: DealershipSubmit, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    d, created = svc.submit_registration(db, me, payload.model_dump(exclude_none=True))
    record = svc.dealership_to_dict(d)
    publish_change(INSERT if created else UPDATE, record)
    return record


@router.get("/me")
def my_registration(db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    d = svc.latest_registration(db, me.id)
    return svc.dealership_to_dict(d) if d else None


@router.put("/me")
def update_my_registration(payload: DealershipUpdate, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    d = svc.latest_registration(db, me.id)
    if d is None:
        raise NotFound("No dealership registration")
    if d.status == "rejected":
        raise Forbidden("Resubmit the registration to edit a rejected dealership")
    fields = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    d = svc.update_details(db, d, fields, me, expected_version=payload.expected_version)
    record = svc.dealership_to_dict(d)
    publish_change(UPDATE, record)
    return record


@router.post("/me/logo")
async def upload_my_logo(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    d = svc.latest_registration(db, me.id)
    if d is None:
        raise NotFound("No dealership registration")
    data = await file.read()
    _, url = store_image(storage, "dealership-logos", f"dealership-{d.id}", file.filename or "logo", data, settings.max_logo_bytes)
    d = svc.update_details(db, d, {"logo_url": url}, me)
    record = svc.dealership_to_dict(d)
    await feed.publish(ChangeEvent(UPDATE, record))
    return record


# Admin -----------------------------------------------------------------------

@admin_router.get("")
def list_requests(
    status: Optional[str] = Query(default=None, pattern="^(pending|approved|rejected)$"),
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    _: Profile = Depends(require_admin),
):
    limit = min(max(1, limit), 100)
    page = max(1, page)
    rows, total = svc.list_requests(db, status=status, q=q, page=page, limit=limit)
    items = []
    for d, owner in rows:
        item = svc.dealership_to_dict(d)
        item["owner"] = _owner_summary(owner)
        items.append(item)
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


@admin_router.get("/{dealership_id}")
def get_request(dealership_id: int, db: Session = Depends(get_db), _: Profile = Depends(require_admin)):
    d = svc.get_dealership(db, dealership_id)
    item = svc.dealership_to_dict(d)
    item["owner"] = _owner_summary(d.owner)
    return item


@admin_router.post("/{dealership_id}/approve")
def approve(dealership_id: int, payload: ReviewRequest, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    d = svc.approve(db, dealership_id, admin.id, payload.notes, expected_version=payload.expected_version)
    record = svc.dealership_to_dict(d)
    publish_change(UPDATE, record)
    return record


@admin_router.post("/{dealership_id}/reject")
def reject(dealership_id: int, payload: ReviewRequest, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    d = svc.reject(db, dealership_id, admin.id, payload.notes, expected_version=payload.expected_version)
    record = svc.dealership_to_dict(d)
    publish_change(UPDATE, record)
    return record


@admin_router.post("/{dealership_id}/feature")
def toggle_featured(dealership_id: int, payload: VersionedRequest, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    d = svc.toggle_featured(db, dealership_id, admin.id, expected_version=payload.expected_version)
    record = svc.dealership_to_dict(d)
    publish_change(UPDATE, record)
    return record


@admin_router.put("/{dealership_id}")
def update_dealership(dealership_id: int, payload: DealershipUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    d = svc.get_dealership(db, dealership_id)
    fields = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    d = svc.update_details(db, d, fields, admin, expected_version=payload.expected_version)
    record = svc.dealership_to_dict(d)
    publish_change(UPDATE, record)
    return record


@admin_router.delete("/{dealership_id}")
def delete_dealership(dealership_id: int, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    record = svc.delete_dealership(db, dealership_id, admin.id)
    publish_change(DELETE, record)
    return {"status": "ok"}
