from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..auth.security import require_admin
from ..models.models import Brand, CarModel, Country, City, CurrencyRate, WebsiteSetting, Car, Profile
from ..schemas.catalog import (
    BrandIn,
    BrandUpdate,
    ModelIn,
    ModelUpdate,
    CountryIn,
    CountryUpdate,
    CityIn,
    CityUpdate,
    CurrencyRateIn,
    SettingIn,
)
from ..services.audit import log_admin_action
from ..services.errors import NotFound, Conflict
from ..storage.provider import StorageProvider
from ..storage.uploads import get_storage, store_image


router = APIRouter(tags=["catalog"])
admin_router = APIRouter(prefix="/admin/catalog", tags=["admin"])


def _brand(b: Brand) -> dict:
    return {"id": b.id, "name": b.name, "name_ar": b.name_ar, "logo_url": b.logo_url}


def _model(m: CarModel) -> dict:
    return {"id": m.id, "brand_id": m.brand_id, "name": m.name, "name_ar": m.name_ar}


def _country(c: Country) -> dict:
    return {
        "id": c.id,
        "code": c.code,
        "name": c.name,
        "name_ar": c.name_ar,
        "currency_code": c.currency_code,
        "currency_symbol": c.currency_symbol,
        "currency_name": c.currency_name,
        "currency_name_ar": c.currency_name_ar,
        "phone_code": c.phone_code,
        "is_active": bool(c.is_active),
    }


def _city(c: City) -> dict:
    return {"id": c.id, "country_id": c.country_id, "name": c.name, "name_ar": c.name_ar, "is_active": bool(c.is_active)}


def _rate(r: CurrencyRate) -> dict:
    return {"from_currency": r.from_currency, "to_currency": r.to_currency, "rate": float(r.rate)}


def _commit_unique(db: Session, what: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict(f"{what} already exists")


def _get(db: Session, model, obj_id: int, what: str):
    obj = db.query(model).filter(model.id == obj_id).first()
    if not obj:
        raise NotFound(f"{what} not found")
    return obj


# Public ----------------------------------------------------------------------

@router.get("/brands")
def list_brands(db: Session = Depends(get_db)):
    return [_brand(b) for b in db.query(Brand).order_by(Brand.name.asc()).all()]


@router.get("/brands/{brand_id}/models")
def list_brand_models(brand_id: int, db: Session = Depends(get_db)):
    _get(db, Brand, brand_id, "Brand")
    rows = db.query(CarModel).filter(CarModel.brand_id == brand_id).order_by(CarModel.name.asc()).all()
    return [_model(m) for m in rows]


@router.get("/countries")
def list_countries(db: Session = Depends(get_db)):
    rows = db.query(Country).filter(Country.is_active.is_(True)).order_by(Country.name.asc()).all()
    return [_country(c) for c in rows]


@router.get("/countries/{code}/cities")
def list_cities(code: str, db: Session = Depends(get_db)):
    country = db.query(Country).filter(Country.code == code.lower(), Country.is_active.is_(True)).first()
    if not country:
        raise NotFound("Country not found")
    rows = (
        db.query(City)
        .filter(City.country_id == country.id, City.is_active.is_(True))
        .order_by(City.name.asc())
        .all()
    )
    return [_city(c) for c in rows]


@router.get("/currency-rates")
def list_rates(base: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(CurrencyRate)
    if base:
        query = query.filter(CurrencyRate.from_currency == base.upper())
    return [_rate(r) for r in query.order_by(CurrencyRate.from_currency, CurrencyRate.to_currency).all()]


@router.get("/settings/{key}")
def get_setting(key: str, db: Session = Depends(get_db)):
    row = db.query(WebsiteSetting).filter(WebsiteSetting.key == key).first()
    if not row:
        raise NotFound("Setting not found")
    return {"key": row.key, "value": row.value}


# Admin -----------------------------------------------------------------------

@admin_router.post("/brands")
def create_brand(payload: BrandIn, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    b = Brand(**payload.model_dump())
    db.add(b)
    _commit_unique(db, "Brand")
    db.refresh(b)
    return _brand(b)


@admin_router.put("/brands/{brand_id}")
def update_brand(brand_id: int, payload: BrandUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    b = _get(db, Brand, brand_id, "Brand")
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(b, k, v)
    _commit_unique(db, "Brand")
    db.refresh(b)
    return _brand(b)


@admin_router.post("/brands/{brand_id}/logo")
async def upload_brand_logo(
    brand_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    admin: Profile = Depends(require_admin),
    storage: StorageProvider = Depends(get_storage),
):
    b = _get(db, Brand, brand_id, "Brand")
    data = await file.read()
    _, url = store_image(storage, "brand-logos", f"brand-{b.id}", file.filename or b.name, data, settings.max_logo_bytes)
    b.logo_url = url
    db.commit()
    db.refresh(b)
    return _brand(b)


@admin_router.delete("/brands/{brand_id}")
def delete_brand(brand_id: int, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    b = _get(db, Brand, brand_id, "Brand")
    if db.query(Car.id).filter(Car.brand_id == b.id).first():
        raise Conflict("Brand is used by car listings")
    log_admin_action(db, admin.id, "delete_brand", "brands", b.id, {"name": b.name})
    db.delete(b)
    db.commit()
    return {"status": "ok"}


@admin_router.post("/models")
def create_model(payload: ModelIn, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    _get(db, Brand, payload.brand_id, "Brand")
    m = CarModel(**payload.model_dump())
    db.add(m)
    _commit_unique(db, "Model")
    db.refresh(m)
    return _model(m)


@admin_router.put("/models/{model_id}")
def update_model(model_id: int, payload: ModelUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    m = _get(db, CarModel, model_id, "Model")
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(m, k, v)
    _commit_unique(db, "Model")
    db.refresh(m)
    return _model(m)


@admin_router.delete("/models/{model_id}")
def delete_model(model_id: int, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    m = _get(db, CarModel, model_id, "Model")
    if db.query(Car.id).filter(Car.model_id == m.id).first():
        raise Conflict("Model is used by car listings")
    db.delete(m)
    db.commit()
    return {"status": "ok"}


@admin_router.get("/countries")
def admin_list_countries(db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    return [_country(c) for c in db.query(Country).order_by(Country.name.asc()).all()]


@admin_router.post("/countries")
def create_country(payload: CountryIn, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    c = Country(**payload.model_dump())
    db.add(c)
    _commit_unique(db, "Country")
    db.refresh(c)
    return _country(c)


@admin_router.put("/countries/{country_id}")
def update_country(country_id: int, payload: CountryUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    c = _get(db, Country, country_id, "Country")
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(c, k, v)
    db.commit()
    db.refresh(c)
    return _country(c)


@admin_router.post("/cities")
def create_city(payload: CityIn, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    _get(db, Country, payload.country_id, "Country")
    c = City(**payload.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    return _city(c)


@admin_router.put("/cities/{city_id}")
def update_city(city_id: int, payload: CityUpdate, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    c = _get(db, City, city_id, "City")
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(c, k, v)
    db.commit()
    db.refresh(c)
    return _city(c)


@admin_router.put("/currency-rates")
def upsert_rate(payload: CurrencyRateIn, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    r = (
        db.query(CurrencyRate)
        .filter(CurrencyRate.from_currency == payload.from_currency, CurrencyRate.to_currency == payload.to_currency)
        .first()
    )
    if r is None:
        r = CurrencyRate(from_currency=payload.from_currency, to_currency=payload.to_currency, rate=payload.rate)
        db.add(r)
    else:
        r.rate = payload.rate
    _commit_unique(db, "Currency rate")
    db.refresh(r)
    return _rate(r)


@admin_router.put("/settings/{key}")
def put_setting(key: str, payload: SettingIn, db: Session = Depends(get_db), admin: Profile = Depends(require_admin)):
    row = db.query(WebsiteSetting).filter(WebsiteSetting.key == key).first()
    before = row.value if row else None
    if row is None:
        row = WebsiteSetting(key=key, value=payload.value)
        db.add(row)
    else:
        row.value = payload.value
    log_admin_action(db, admin.id, "update_setting", "website_settings", key, {"value": {"before": before, "after": payload.value}})
    db.commit()
    return {"key": row.key, "value": row.value}
