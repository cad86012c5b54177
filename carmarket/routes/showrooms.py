from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import or_, func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Dealership, Profile, Country, Car
from ..services.errors import NotFound
from ..services.listings import visible_cars_query, car_to_dict


router = APIRouter(prefix="/showrooms", tags=["showrooms"])


def _showroom_card(d: Dealership, car_count: int = 0) -> dict:
    return {
        "id": d.id,
        "business_name": d.business_name,
        "business_name_ar": d.business_name_ar,
        "business_type": d.business_type,
        "dealership_type": d.dealership_type,
        "logo_url": d.logo_url,
        "location": d.location,
        "location_ar": d.location_ar,
        "country_id": d.country_id,
        "city_id": d.city_id,
        "is_featured": bool(d.is_featured),
        "car_count": car_count,
    }


def list_showrooms(
    db: Session,
    country_code: Optional[str] = None,
    business_type: Optional[str] = None,
    dealership_type: Optional[str] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 24,
) -> dict:
    limit = min(max(1, limit), 100)
    page = max(1, page)
    query = db.query(Dealership).filter(Dealership.status == "approved")
    if country_code:
        country_ids = db.query(Country.id).filter(Country.code == country_code.lower())
        query = query.filter(Dealership.country_id.in_(country_ids.scalar_subquery()))
    if business_type:
        query = query.filter(Dealership.business_type == business_type)
    if dealership_type:
        query = query.filter(Dealership.dealership_type == dealership_type)
    if q:
        like = f"%{q}%"
        query = query.filter(
            or_(
                Dealership.business_name.ilike(like),
                Dealership.business_name_ar.ilike(like),
                Dealership.location.ilike(like),
                Dealership.location_ar.ilike(like),
            )
        )
    total = query.with_entities(func.count(Dealership.id)).scalar() or 0
    rows = (
        query.order_by(Dealership.is_featured.desc(), Dealership.business_name.asc(), Dealership.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    # Count only cars a visitor can actually see
    counts = dict(
        visible_cars_query(db)
        .filter(Car.dealership_id.in_([d.id for d in rows] or [-1]))
        .with_entities(Car.dealership_id, func.count(Car.id))
        .group_by(Car.dealership_id)
        .all()
    )
    return {
        "items": [_showroom_card(d, counts.get(d.id, 0)) for d in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


def showroom_detail(db: Session, dealership_id: int, country_code: Optional[str] = None) -> dict:
    d = (
        db.query(Dealership)
        .filter(Dealership.id == dealership_id, Dealership.status == "approved")
        .first()
    )
    if not d:
        raise NotFound("Showroom not found")
    if country_code:
        country = db.query(Country).filter(Country.id == d.country_id).first() if d.country_id else None
        if country is None or country.code != country_code.lower():
            raise NotFound("Showroom not found")
    owner = db.query(Profile).filter(Profile.id == d.user_id).first()
    cars = (
        visible_cars_query(db)
        .filter(Car.dealership_id == d.id)
        .order_by(Car.is_featured.desc(), Car.created_at.desc(), Car.id.desc())
        .all()
    )
    out = _showroom_card(d, len(cars))
    out.update(
        {
            "description": d.description,
            "description_ar": d.description_ar,
            "email": d.email or (owner.email if owner else None),
            "phone": d.phone or (owner.phone_number if owner else None),
            "owner_name": d.owner_name or (owner.full_name if owner else None),
            "cars": [car_to_dict(c) for c in cars],
        }
    )
    return out


@router.get("")
def showrooms(
    country_code: Optional[str] = None,
    business_type: Optional[str] = None,
    dealership_type: Optional[str] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 24,
    db: Session = Depends(get_db),
):
    return list_showrooms(db, country_code, business_type, dealership_type, q, page, limit)


@router.get("/{dealership_id}")
def showroom(dealership_id: int, db: Session = Depends(get_db)):
    return showroom_detail(db, dealership_id)
