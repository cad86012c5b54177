from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, Query
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import get_current_user, get_optional_user
from ..models.models import Profile, Dealership
from ..schemas.cars import CarCreate, CarUpdate
from ..services import listings as svc
from ..services.errors import NotFound
from ..storage.provider import StorageProvider
from ..storage.uploads import get_storage, store_image


router = APIRouter(prefix="/cars", tags=["cars"])


def _paged(items, total: int, page: int, limit: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


def browse_cars(
    db: Session,
    country_code: Optional[str] = None,
    q: Optional[str] = None,
    brand_id: Optional[int] = None,
    model_id: Optional[int] = None,
    dealership_id: Optional[int] = None,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
    price_min: Optional[Decimal] = None,
    price_max: Optional[Decimal] = None,
    mileage_min: Optional[int] = None,
    mileage_max: Optional[int] = None,
    fuel_type: Optional[str] = None,
    gearbox_type: Optional[str] = None,
    body_type: Optional[str] = None,
    condition: Optional[str] = None,
    city_id: Optional[int] = None,
    sort: str = "newest",
    featured_first: bool = False,
    page: int = 1,
    limit: int = 20,
) -> dict:
    limit = min(max(1, limit), 100)
    page = max(1, page)
    filters = {
        "country_code": country_code,
        "q": q,
        "brand_id": brand_id,
        "model_id": model_id,
        "dealership_id": dealership_id,
        "year_min": year_min,
        "year_max": year_max,
        "price_min": price_min,
        "price_max": price_max,
        "mileage_min": mileage_min,
        "mileage_max": mileage_max,
        "fuel_type": fuel_type,
        "gearbox_type": gearbox_type,
        "body_type": body_type,
        "condition": condition,
        "city_id": city_id,
    }
    items, total = svc.browse(db, filters, sort=sort, page=page, limit=limit, featured_first=featured_first)
    return _paged([svc.car_to_dict(c) for c in items], total, page, limit)


@router.get("")
def list_cars(
    q: Optional[str] = None,
    country_code: Optional[str] = None,
    brand_id: Optional[int] = None,
    model_id: Optional[int] = None,
    dealership_id: Optional[int] = None,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
    price_min: Optional[Decimal] = None,
    price_max: Optional[Decimal] = None,
    mileage_min: Optional[int] = None,
    mileage_max: Optional[int] = None,
    fuel_type: Optional[str] = None,
    gearbox_type: Optional[str] = None,
    body_type: Optional[str] = None,
    condition: Optional[str] = None,
    city_id: Optional[int] = None,
    sort: str = Query(default="newest", pattern="^(newest|oldest|price_asc|price_desc|year_asc|year_desc|mileage_asc|mileage_desc)$"),
    featured_first: bool = False,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    return browse_cars(
        db,
        country_code=country_code,
        q=q,
        brand_id=brand_id,
        model_id=model_id,
        dealership_id=dealership_id,
        year_min=year_min,
        year_max=year_max,
        price_min=price_min,
        price_max=price_max,
        mileage_min=mileage_min,
        mileage_max=mileage_max,
        fuel_type=fuel_type,
        gearbox_type=gearbox_type,
        body_type=body_type,
        condition=condition,
        city_id=city_id,
        sort=sort,
        featured_first=featured_first,
        page=page,
        limit=limit,
    )


@router.get("/mine")
def my_listings(status: str = "all", db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    items, counts = svc.my_listings(db, me.id, status)
    return {"items": [svc.car_to_dict(c) for c in items], "counts": counts}


def car_detail(db: Session, car_id: int, viewer: Optional[Profile]) -> dict:
    car = svc.get_car(db, car_id)
    dealership = db.query(Dealership).filter(Dealership.id == car.dealership_id).first() if car.dealership_id else None
    can_manage = viewer is not None and (viewer.role == "admin" or viewer.id == car.user_id)
    if not svc.is_publicly_visible(car, dealership) and not can_manage:
        raise NotFound("Car not found")
    out = svc.car_to_dict(car)
    seller = db.query(Profile).filter(Profile.id == car.user_id).first()
    out["seller"] = {
        "full_name": seller.full_name if seller else None,
        "phone_number": seller.phone_number if seller else None,
        "email": seller.email if seller else None,
    }
    out["dealership"] = (
        {
            "id": dealership.id,
            "business_name": dealership.business_name,
            "business_name_ar": dealership.business_name_ar,
            "logo_url": dealership.logo_url,
            "phone": dealership.phone,
            "location": dealership.location,
        }
        if dealership is not None and dealership.status == "approved"
        else None
    )
    return out


@router.get("/{car_id}")
def get_car(car_id: int, db: Session = Depends(get_db), viewer: Optional[Profile] = Depends(get_optional_user)):
    return car_detail(db, car_id, viewer)


@router.get("/{car_id}/similar")
def similar(car_id: int, limit: int = 6, db: Session = Depends(get_db)):
    car = svc.get_visible_car(db, car_id)
    return [svc.car_to_dict(c) for c in svc.similar_cars(db, car, limit=min(max(1, limit), 24))]


@router.post("/{car_id}/view")
def record_view(car_id: int, db: Session = Depends(get_db)):
    return {"id": car_id, "views": svc.record_view(db, car_id)}


@router.post("")
def create_car(payload: CarCreate, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    car = svc.create_listing(db, me, payload.model_dump(exclude_none=True))
    return svc.car_to_dict(car)


@router.put("/{car_id}")
def update_car(car_id: int, payload: CarUpdate, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    car = svc.get_car(db, car_id)
    fields = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
    car, reverted = svc.update_listing(db, car, me, fields, expected_version=payload.expected_version)
    out = svc.car_to_dict(car)
    out["sent_for_review"] = reverted
    return out


@router.post("/{car_id}/sold")
def mark_sold(car_id: int, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    car = svc.mark_sold(db, svc.get_car(db, car_id), me)
    return svc.car_to_dict(car)


@router.delete("/{car_id}")
def delete_car(
    car_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    svc.delete_listing(db, svc.get_car(db, car_id), me, storage=storage)
    return {"status": "ok"}


@router.post("/{car_id}/images")
async def upload_image(
    car_id: int,
    file: UploadFile = File(...),
    is_main: bool = Form(False),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    car = svc.get_car(db, car_id)
    svc.ensure_can_manage(car, me)
    data = await file.read()
    key, url = store_image(storage, "car-images", f"car-{car.id}", file.filename or "photo", data, settings.max_car_image_bytes)
    img = svc.add_image(db, car, url, storage_key=key, is_main=is_main)
    return svc.image_to_dict(img)


@router.put("/{car_id}/images/{image_id}/main")
def set_main_photo(car_id: int, image_id: int, db: Session = Depends(get_db), me: Profile = Depends(get_current_user)):
    car = svc.get_car(db, car_id)
    svc.ensure_can_manage(car, me)
    svc.set_main_photo(db, car, image_id)
    return svc.car_to_dict(car)


@router.delete("/{car_id}/images/{image_id}")
def delete_image(
    car_id: int,
    image_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    car = svc.get_car(db, car_id)
    svc.ensure_can_manage(car, me)
    svc.delete_image(db, car, image_id, storage=storage)
    return {"status": "ok"}
