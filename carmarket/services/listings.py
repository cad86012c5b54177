"""
Car listings and the public visibility gate.

A listing is publicly visible only when its own status is Approved and,
for dealership listings, the dealership is approved. Every public query
starts from visible_cars_query().
"""
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import and_, or_, func, case
from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..db import commit_versioned
from ..models.models import (
    Car,
    CarImage,
    CarReport,
    Country,
    Dealership,
    Favorite,
    Brand,
    CarModel,
    Profile,
    CAR_STATUSES,
    FUEL_TYPES,
    GEARBOX_TYPES,
    BODY_TYPES,
    CAR_CONDITIONS,
)
from .audit import log_admin_action
from .dealerships import get_approved_dealership_for_user
from .errors import NotFound, Forbidden, ValidationFailed, InvalidTransition, StaleWriteError, Conflict
from .notifications import notify


log = structlog.get_logger(__name__)

# Admin moderation moves; Approved -> Rejected is a takedown
MODERATION_TRANSITIONS = {
    ("Pending", "Approved"),
    ("Pending", "Rejected"),
    ("Approved", "Rejected"),
}

LISTING_FIELDS = (
    "brand_id",
    "model_id",
    "year",
    "mileage",
    "price",
    "currency_code",
    "description",
    "description_ar",
    "exterior_color",
    "interior_color",
    "cylinders",
    "fuel_type",
    "gearbox_type",
    "body_type",
    "condition",
    "country_id",
    "city_id",
)

SORTS = {
    "newest": (Car.created_at.desc(), Car.id.desc()),
    "oldest": (Car.created_at.asc(), Car.id.asc()),
    "price_asc": (Car.price.asc(), Car.id.desc()),
    "price_desc": (Car.price.desc(), Car.id.desc()),
    "year_desc": (Car.year.desc(), Car.id.desc()),
    "year_asc": (Car.year.asc(), Car.id.desc()),
    "mileage_asc": (Car.mileage.asc(), Car.id.desc()),
    "mileage_desc": (Car.mileage.desc(), Car.id.desc()),
}

MY_LISTING_FILTERS = {
    "all": None,
    "approved": "Approved",
    "pending": "Pending",
    "rejected": "Rejected",
    "sold": "Sold",
}


# ---------------------------------------------------------------------------
# Visibility gate
# ---------------------------------------------------------------------------

def is_publicly_visible(car: Car, dealership: Optional[Dealership]) -> bool:
    if car.status != "Approved":
        return False
    if car.dealership_id is None:
        return True
    return dealership is not None and dealership.status == "approved"


def visibility_clause():
    return and_(
        Car.status == "Approved",
        or_(Car.dealership_id.is_(None), Dealership.status == "approved"),
    )


def visible_cars_query(db: Session):
    return (
        db.query(Car)
        .outerjoin(Dealership, Dealership.id == Car.dealership_id)
        .filter(visibility_clause())
    )


def get_visible_car(db: Session, car_id: int) -> Car:
    car = visible_cars_query(db).filter(Car.id == car_id).first()
    if not car:
        raise NotFound("Car not found")
    return car


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def image_to_dict(img: CarImage) -> Dict[str, Any]:
    return {"id": img.id, "url": img.url, "is_main": bool(img.is_main), "created_at": _iso(img.created_at)}


def car_to_dict(car: Car) -> Dict[str, Any]:
    images = list(car.images or [])
    main = next((i for i in images if i.is_main), images[0] if images else None)
    return {
        "id": car.id,
        "user_id": str(car.user_id),
        "dealership_id": car.dealership_id,
        "brand_id": car.brand_id,
        "brand_name": car.brand.name if car.brand else None,
        "model_id": car.model_id,
        "model_name": car.model.name if car.model else None,
        "year": car.year,
        "mileage": car.mileage,
        "price": float(car.price) if car.price is not None else None,
        "currency_code": car.currency_code,
        "description": car.description,
        "description_ar": car.description_ar,
        "exterior_color": car.exterior_color,
        "interior_color": car.interior_color,
        "cylinders": car.cylinders,
        "fuel_type": car.fuel_type,
        "gearbox_type": car.gearbox_type,
        "body_type": car.body_type,
        "condition": car.condition,
        "status": car.status,
        "is_featured": bool(car.is_featured),
        "views": car.views or 0,
        "country_id": car.country_id,
        "city_id": car.city_id,
        "main_image_url": main.url if main else None,
        "images": [image_to_dict(i) for i in images],
        "created_at": _iso(car.created_at),
        "updated_at": _iso(car.updated_at),
        "version": car.version,
    }


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _validate_fields(db: Session, fields: Dict[str, Any], current: Optional[Car] = None) -> Dict[str, Any]:
    unknown = set(fields) - set(LISTING_FIELDS)
    if unknown:
        raise ValidationFailed(f"Unknown listing fields: {', '.join(sorted(unknown))}")
    for name, allowed in (
        ("fuel_type", FUEL_TYPES),
        ("gearbox_type", GEARBOX_TYPES),
        ("body_type", BODY_TYPES),
        ("condition", CAR_CONDITIONS),
    ):
        if name in fields and fields[name] not in allowed:
            raise ValidationFailed(f"Invalid {name}")
    if "year" in fields:
        max_year = datetime.utcnow().year + 1
        if not (1900 <= int(fields["year"]) <= max_year):
            raise ValidationFailed("Invalid year")
    if "price" in fields and (fields["price"] is None or float(fields["price"]) <= 0):
        raise ValidationFailed("Price must be positive")
    if "mileage" in fields and fields["mileage"] is not None and int(fields["mileage"]) < 0:
        raise ValidationFailed("Mileage cannot be negative")

    brand_id = fields.get("brand_id", current.brand_id if current else None)
    model_id = fields.get("model_id", current.model_id if current else None)
    if "brand_id" in fields or "model_id" in fields:
        model = db.query(CarModel).filter(CarModel.id == model_id).first()
        if not model or model.brand_id != brand_id:
            raise ValidationFailed("Model does not belong to brand")
    return fields


def _check_version(car: Car, expected_version: Optional[int]) -> None:
    if expected_version is not None and car.version != expected_version:
        raise StaleWriteError("Car", car.id)


def get_car(db: Session, car_id: int) -> Car:
    car = db.query(Car).filter(Car.id == car_id).first()
    if not car:
        raise NotFound("Car not found")
    return car


def ensure_can_manage(car: Car, actor: Profile) -> None:
    if actor.role != "admin" and car.user_id != actor.id:
        raise Forbidden("Not the owner of this listing")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_listing(db: Session, user: Profile, fields: Dict[str, Any]) -> Car:
    fields = dict(fields)
    for required in ("brand_id", "model_id", "year", "price", "fuel_type", "gearbox_type", "body_type", "condition"):
        if fields.get(required) is None:
            raise ValidationFailed(f"{required} is required")
    fields = _validate_fields(db, fields)

    if not fields.get("currency_code"):
        country = None
        if fields.get("country_id"):
            country = db.query(Country).filter(Country.id == fields["country_id"]).first()
        fields["currency_code"] = country.currency_code if country else settings.default_currency

    dealership = get_approved_dealership_for_user(db, user.id)
    car = Car(
        user_id=user.id,
        dealership_id=dealership.id if dealership else None,
        status="Pending",
        **fields,
    )
    db.add(car)
    db.commit()
    db.refresh(car)
    log.info("car_listing_created", car_id=car.id, user_id=str(user.id), dealership_id=car.dealership_id)
    return car


def update_listing(
    db: Session,
    car: Car,
    actor: Profile,
    fields: Dict[str, Any],
    expected_version: Optional[int] = None,
) -> Tuple[Car, bool]:
    """
    Apply an edit. Returns (car, sent_back_to_review).

    An owner edit of an Approved listing returns it to Pending when
    REAPPROVE_ON_EDIT is on; an owner edit of a Rejected listing always
    resubmits it. Admin edits leave the status alone.
    """
    ensure_can_manage(car, actor)
    _check_version(car, expected_version)
    if car.status == "Sold":
        raise Conflict("Sold listings cannot be edited")
    fields = _validate_fields(db, dict(fields), current=car)
    for key, value in fields.items():
        setattr(car, key, value)

    reverted = False
    owner_edit = actor.role != "admin"
    if owner_edit and (
        (car.status == "Approved" and settings.reapprove_on_edit) or car.status == "Rejected"
    ):
        previous = car.status
        car.status = "Pending"
        reverted = True
        notify(
            db,
            car.user_id,
            "Listing sent for review",
            f"Your listing #{car.id} was edited and is pending approval again.",
            "status_change",
            link=f"/cars/{car.id}",
        )
        log.info("car_status_changed", car_id=car.id, before=previous, after="Pending", reason="owner_edit")
    elif actor.role == "admin" and actor.id != car.user_id:
        log_admin_action(db, actor.id, "update_car", "cars", car.id, {"fields": sorted(fields)})

    commit_versioned(db, "Car", car.id)
    db.refresh(car)
    return car, reverted


def moderate(
    db: Session,
    car_id: int,
    admin: Profile,
    target: str,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Car:
    car = get_car(db, car_id)
    _check_version(car, expected_version)
    if target not in CAR_STATUSES or (car.status, target) not in MODERATION_TRANSITIONS:
        raise InvalidTransition("car", car.status, target)
    previous = car.status
    car.status = target
    if target == "Approved":
        notify(db, car.user_id, "Listing approved", f"Your listing #{car.id} is now live.", "car_approved", link=f"/cars/{car.id}")
    else:
        message = f"Your listing #{car.id} was rejected."
        if notes:
            message = f"{message} Notes: {notes}"
        notify(db, car.user_id, "Listing rejected", message, "car_rejected", link=f"/cars/{car.id}")
    log_admin_action(
        db, admin.id, "moderate_car", "cars", car.id,
        {"status": {"before": previous, "after": target}, "notes": notes},
    )
    commit_versioned(db, "Car", car.id)
    db.refresh(car)
    log.info("car_status_changed", car_id=car.id, before=previous, after=target, reason="moderation")
    return car


def mark_sold(db: Session, car: Car, actor: Profile, expected_version: Optional[int] = None) -> Car:
    ensure_can_manage(car, actor)
    _check_version(car, expected_version)
    if car.status == "Sold":
        raise InvalidTransition("car", car.status, "Sold")
    previous = car.status
    car.status = "Sold"
    notify(db, car.user_id, "Car marked as sold", f"Your listing #{car.id} has been marked as sold.", "sold", link=f"/cars/{car.id}")
    if actor.role == "admin" and actor.id != car.user_id:
        log_admin_action(db, actor.id, "mark_car_sold", "cars", car.id, {"status": {"before": previous, "after": "Sold"}})
    commit_versioned(db, "Car", car.id)
    db.refresh(car)
    log.info("car_status_changed", car_id=car.id, before=previous, after="Sold", reason="sold")
    return car


def delete_listing(db: Session, car: Car, actor: Profile, storage=None) -> None:
    """Delete image rows, then favorites and reports, then the car itself."""
    ensure_can_manage(car, actor)
    car_id = car.id
    keys = [img.storage_key for img in car.images if img.storage_key]

    db.query(CarImage).filter(CarImage.car_id == car_id).delete(synchronize_session=False)
    db.query(Favorite).filter(Favorite.car_id == car_id).delete(synchronize_session=False)
    db.query(CarReport).filter(CarReport.car_id == car_id).delete(synchronize_session=False)
    db.expire(car, ["images"])
    if actor.role == "admin" and actor.id != car.user_id:
        log_admin_action(db, actor.id, "delete_car", "cars", car_id, {"images": len(keys)})
    db.delete(car)
    commit_versioned(db, "Car", car_id)
    log.info("car_listing_deleted", car_id=car_id, images=len(keys))

    if storage is None:
        return
    for key in keys:
        try:
            storage.delete("car-images", key)
        except Exception as e:
            log.warning("car_image_object_delete_failed", car_id=car_id, key=key, error=str(e))


def add_image(db: Session, car: Car, url: str, storage_key: Optional[str] = None, is_main: bool = False) -> CarImage:
    has_images = db.query(CarImage.id).filter(CarImage.car_id == car.id).first() is not None
    make_main = is_main or not has_images
    if make_main:
        db.query(CarImage).filter(CarImage.car_id == car.id).update({CarImage.is_main: False}, synchronize_session=False)
    img = CarImage(car_id=car.id, url=url, storage_key=storage_key, is_main=make_main)
    db.add(img)
    db.commit()
    db.refresh(img)
    db.expire(car, ["images"])
    return img


def set_main_photo(db: Session, car: Car, image_id: int) -> CarImage:
    img = db.query(CarImage).filter(CarImage.id == image_id, CarImage.car_id == car.id).first()
    if not img:
        raise NotFound("Image not found")
    db.query(CarImage).filter(CarImage.car_id == car.id).update({CarImage.is_main: False}, synchronize_session=False)
    img.is_main = True
    db.commit()
    db.refresh(img)
    db.expire(car, ["images"])
    return img


def delete_image(db: Session, car: Car, image_id: int, storage=None) -> None:
    img = db.query(CarImage).filter(CarImage.id == image_id, CarImage.car_id == car.id).first()
    if not img:
        raise NotFound("Image not found")
    key, was_main = img.storage_key, img.is_main
    db.delete(img)
    db.flush()
    if was_main:
        nxt = db.query(CarImage).filter(CarImage.car_id == car.id).order_by(CarImage.id.asc()).first()
        if nxt:
            nxt.is_main = True
    db.commit()
    db.expire(car, ["images"])
    if storage is not None and key:
        try:
            storage.delete("car-images", key)
        except Exception as e:
            log.warning("car_image_object_delete_failed", car_id=car.id, key=key, error=str(e))


def record_view(db: Session, car_id: int) -> int:
    car = get_visible_car(db, car_id)
    # Bulk counter update: no version bump, updated_at untouched
    db.query(Car).filter(Car.id == car.id).update(
        {Car.views: Car.views + 1, Car.updated_at: Car.updated_at},
        synchronize_session=False,
    )
    db.commit()
    return db.query(Car.views).filter(Car.id == car.id).scalar() or 0


def toggle_featured(db: Session, car_id: int, admin: Profile, expected_version: Optional[int] = None) -> Car:
    car = get_car(db, car_id)
    _check_version(car, expected_version)
    car.is_featured = not bool(car.is_featured)
    log_admin_action(
        db, admin.id, "toggle_featured_car", "cars", car.id,
        {"is_featured": {"before": not car.is_featured, "after": car.is_featured}},
    )
    commit_versioned(db, "Car", car.id)
    db.refresh(car)
    return car


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _apply_filters(db: Session, query, filters: Dict[str, Any]):
    f = {k: v for k, v in (filters or {}).items() if v not in (None, "")}
    if "brand_id" in f:
        query = query.filter(Car.brand_id == f["brand_id"])
    if "model_id" in f:
        query = query.filter(Car.model_id == f["model_id"])
    if "dealership_id" in f:
        query = query.filter(Car.dealership_id == f["dealership_id"])
    if "year_min" in f:
        query = query.filter(Car.year >= f["year_min"])
    if "year_max" in f:
        query = query.filter(Car.year <= f["year_max"])
    if "price_min" in f:
        query = query.filter(Car.price >= f["price_min"])
    if "price_max" in f:
        query = query.filter(Car.price <= f["price_max"])
    if "mileage_min" in f:
        query = query.filter(Car.mileage >= f["mileage_min"])
    if "mileage_max" in f:
        query = query.filter(Car.mileage <= f["mileage_max"])
    for name in ("fuel_type", "gearbox_type", "body_type", "condition"):
        if name in f:
            query = query.filter(getattr(Car, name) == f[name])
    if "city_id" in f:
        query = query.filter(Car.city_id == f["city_id"])
    if "country_code" in f:
        country_ids = db.query(Country.id).filter(Country.code == str(f["country_code"]).lower())
        query = query.filter(Car.country_id.in_(country_ids.scalar_subquery()))
    if "q" in f:
        like = f"%{f['q']}%"
        brand_ids = db.query(Brand.id).filter(or_(Brand.name.ilike(like), Brand.name_ar.ilike(like)))
        model_ids = db.query(CarModel.id).filter(or_(CarModel.name.ilike(like), CarModel.name_ar.ilike(like)))
        query = query.filter(
            or_(
                Car.description.ilike(like),
                Car.description_ar.ilike(like),
                Car.brand_id.in_(brand_ids.scalar_subquery()),
                Car.model_id.in_(model_ids.scalar_subquery()),
            )
        )
    return query


def browse(
    db: Session,
    filters: Optional[Dict[str, Any]] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 20,
    featured_first: bool = False,
) -> Tuple[List[Car], int]:
    query = _apply_filters(db, visible_cars_query(db), filters or {})
    total = query.with_entities(func.count(Car.id)).scalar() or 0
    order = list(SORTS.get(sort, SORTS["newest"]))
    if featured_first:
        order.insert(0, Car.is_featured.desc())
    items = query.order_by(*order).offset((page - 1) * limit).limit(limit).all()
    return items, total


def similar_cars(db: Session, car: Car, limit: int = 6) -> List[Car]:
    return (
        visible_cars_query(db)
        .filter(Car.id != car.id)
        .filter(or_(Car.brand_id == car.brand_id, Car.body_type == car.body_type))
        .order_by((Car.brand_id == car.brand_id).desc(), Car.created_at.desc(), Car.id.desc())
        .limit(limit)
        .all()
    )


def status_counts(db: Session, *criteria) -> Dict[str, int]:
    rows = db.query(Car.status, func.count(Car.id)).filter(*criteria).group_by(Car.status).all()
    counts = {s.lower(): 0 for s in CAR_STATUSES}
    for status, n in rows:
        counts[status.lower()] = int(n)
    counts["all"] = sum(counts[s.lower()] for s in CAR_STATUSES)
    return counts


def my_listings(db: Session, user_id, status_filter: str = "all") -> Tuple[List[Car], Dict[str, int]]:
    if status_filter not in MY_LISTING_FILTERS:
        raise ValidationFailed("Invalid status filter")
    query = db.query(Car).filter(Car.user_id == user_id)
    status = MY_LISTING_FILTERS[status_filter]
    if status:
        query = query.filter(Car.status == status)
    items = query.order_by(Car.created_at.desc(), Car.id.desc()).all()
    return items, status_counts(db, Car.user_id == user_id)


def dashboard_stats(db: Session, dealership_id: int) -> Dict[str, int]:
    row = (
        db.query(
            func.count(Car.id),
            func.coalesce(func.sum(Car.views), 0),
            func.sum(case((Car.status == "Approved", 1), else_=0)),
            func.sum(case((Car.status == "Pending", 1), else_=0)),
            func.sum(case((Car.status == "Rejected", 1), else_=0)),
            func.sum(case((Car.status == "Sold", 1), else_=0)),
        )
        .filter(Car.dealership_id == dealership_id)
        .one()
    )
    total, views, approved, pending, rejected, sold = row
    return {
        "total_listings": int(total or 0),
        "total_views": int(views or 0),
        "approved": int(approved or 0),
        "pending": int(pending or 0),
        "rejected": int(rejected or 0),
        "sold": int(sold or 0),
    }
