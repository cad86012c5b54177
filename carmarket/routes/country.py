"""
Country-scoped aliases (/{country_code}/...) of the public pages.
Registered last so fixed prefixes always win.
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_optional_user
from ..models.models import Country, Profile
from ..services.errors import NotFound
from .cars import browse_cars, car_detail
from .showrooms import list_showrooms, showroom_detail


router = APIRouter(prefix="/{country_code}", tags=["country"])


def active_country(country_code: str, db: Session = Depends(get_db)) -> Country:
    code = (country_code or "").lower()
    country = None
    if len(code) == 2 and code.isalpha():
        country = db.query(Country).filter(Country.code == code, Country.is_active.is_(True)).first()
    if country is None:
        raise NotFound("Unknown country")
    return country


@router.get("/cars")
def country_cars(
    q: Optional[str] = None,
    brand_id: Optional[int] = None,
    model_id: Optional[int] = None,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
    price_min: Optional[Decimal] = None,
    price_max: Optional[Decimal] = None,
    body_type: Optional[str] = None,
    fuel_type: Optional[str] = None,
    condition: Optional[str] = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 20,
    country: Country = Depends(active_country),
    db: Session = Depends(get_db),
):
    return browse_cars(
        db,
        country_code=country.code,
        q=q,
        brand_id=brand_id,
        model_id=model_id,
        year_min=year_min,
        year_max=year_max,
        price_min=price_min,
        price_max=price_max,
        body_type=body_type,
        fuel_type=fuel_type,
        condition=condition,
        sort=sort,
        featured_first=True,
        page=page,
        limit=limit,
    )


@router.get("/cars/{car_id}")
def country_car(
    car_id: int,
    country: Country = Depends(active_country),
    db: Session = Depends(get_db),
    viewer: Optional[Profile] = Depends(get_optional_user),
):
    out = car_detail(db, car_id, viewer)
    if out["country_id"] is not None and out["country_id"] != country.id:
        raise NotFound("Car not found")
    return out


@router.get("/showrooms")
def country_showrooms(
    business_type: Optional[str] = None,
    dealership_type: Optional[str] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 24,
    country: Country = Depends(active_country),
    db: Session = Depends(get_db),
):
    return list_showrooms(db, country.code, business_type, dealership_type, q, page, limit)


@router.get("/showrooms/{dealership_id}")
def country_showroom(dealership_id: int, country: Country = Depends(active_country), db: Session = Depends(get_db)):
    return showroom_detail(db, dealership_id, country_code=country.code)
