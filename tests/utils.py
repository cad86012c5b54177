import io
from decimal import Decimal

from PIL import Image

from carmarket.auth.security import create_access_token, get_password_hash
from carmarket.models.models import Profile, Country, City, Brand, CarModel, Dealership, Car, CarImage


PASSWORD = "password123"

SUBMISSION = {
    "business_name": "Doha Motors",
    "business_name_ar": "الدوحة للسيارات",
    "business_type": "Showroom",
    "dealership_type": "Official",
    "email": "info@dohamotors.qa",
    "phone": "+97444440000",
}


def make_user(db, email, role="normal_user", **extra):
    user = Profile(email=email, password_hash=get_password_hash(PASSWORD), role=role, **extra)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id), role=user.role)}"}


def seed_catalog(db):
    qa = Country(code="qa", name="Qatar", currency_code="QAR", is_active=True)
    xx = Country(code="xx", name="Hidden", currency_code="USD", is_active=False)
    db.add_all([qa, xx])
    db.flush()
    doha = City(country_id=qa.id, name="Doha")
    toyota = Brand(name="Toyota")
    nissan = Brand(name="Nissan")
    db.add_all([doha, toyota, nissan])
    db.flush()
    camry = CarModel(brand_id=toyota.id, name="Camry")
    patrol = CarModel(brand_id=nissan.id, name="Patrol")
    db.add_all([camry, patrol])
    db.commit()
    return {"country": qa, "hidden_country": xx, "city": doha, "brand": toyota, "model": camry, "brand2": nissan, "model2": patrol}


def make_dealership(db, user, status="pending", **extra):
    fields = {"business_name": "Doha Motors", "business_type": "Dealership", "dealership_type": "Private"}
    fields.update(extra)
    d = Dealership(user_id=user.id, status=status, **fields)
    db.add(d)
    db.commit()
    db.refresh(d)
    return d


def make_car(db, user, catalog, status="Approved", dealership=None, **extra):
    fields = {
        "brand_id": catalog["brand"].id,
        "model_id": catalog["model"].id,
        "year": 2020,
        "mileage": 40000,
        "price": Decimal("85000"),
        "currency_code": "QAR",
        "fuel_type": "Petrol",
        "gearbox_type": "Automatic",
        "body_type": "Sedan",
        "condition": "Good",
        "country_id": catalog["country"].id,
    }
    fields.update(extra)
    car = Car(user_id=user.id, dealership_id=dealership.id if dealership else None, status=status, **fields)
    db.add(car)
    db.commit()
    db.refresh(car)
    return car


def add_images(db, car, n=2):
    imgs = [CarImage(car_id=car.id, url=f"http://img/{car.id}/{i}.jpg", is_main=(i == 0)) for i in range(n)]
    db.add_all(imgs)
    db.commit()
    return imgs


def car_payload(catalog, **extra):
    payload = {
        "brand_id": catalog["brand"].id,
        "model_id": catalog["model"].id,
        "year": 2021,
        "mileage": 12000,
        "price": "99000",
        "fuel_type": "Petrol",
        "gearbox_type": "Automatic",
        "body_type": "SUV",
        "condition": "Excellent",
        "country_id": catalog["country"].id,
    }
    payload.update(extra)
    return payload


def png_bytes(size=(8, 8)):
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()
