#!/usr/bin/env python3
"""
Seed countries, cities, brands, models and default website settings.
Idempotent: existing rows (matched by natural key) are left untouched.
Run from project root: python scripts/seed_reference_data.py
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from carmarket.db import Base, engine, SessionLocal
from carmarket.models.models import Country, City, Brand, CarModel, WebsiteSetting


COUNTRIES = [
    # code, name, name_ar, currency, symbol, phone
    ("qa", "Qatar", "قطر", "QAR", "ر.ق", "+974"),
    ("sa", "Saudi Arabia", "السعودية", "SAR", "ر.س", "+966"),
    ("ae", "United Arab Emirates", "الإمارات", "AED", "د.إ", "+971"),
    ("kw", "Kuwait", "الكويت", "KWD", "د.ك", "+965"),
    ("bh", "Bahrain", "البحرين", "BHD", "د.ب", "+973"),
    ("om", "Oman", "عُمان", "OMR", "ر.ع", "+968"),
    ("eg", "Egypt", "مصر", "EGP", "ج.م", "+20"),
    ("jo", "Jordan", "الأردن", "JOD", "د.ا", "+962"),
    ("sy", "Syria", "سوريا", "SYP", "ل.س", "+963"),
]

CITIES = {
    "qa": [("Doha", "الدوحة"), ("Al Rayyan", "الريان"), ("Al Wakrah", "الوكرة")],
    "sa": [("Riyadh", "الرياض"), ("Jeddah", "جدة"), ("Dammam", "الدمام")],
    "ae": [("Dubai", "دبي"), ("Abu Dhabi", "أبو ظبي"), ("Sharjah", "الشارقة")],
    "kw": [("Kuwait City", "مدينة الكويت")],
    "bh": [("Manama", "المنامة")],
    "om": [("Muscat", "مسقط")],
    "eg": [("Cairo", "القاهرة"), ("Alexandria", "الإسكندرية")],
    "jo": [("Amman", "عمّان")],
    "sy": [("Damascus", "دمشق"), ("Aleppo", "حلب")],
}

BRANDS = {
    "Toyota": ("تويوتا", ["Camry", "Corolla", "Land Cruiser", "Hilux", "RAV4"]),
    "Nissan": ("نيسان", ["Patrol", "Altima", "Sunny", "X-Trail"]),
    "Lexus": ("لكزس", ["LX", "ES", "RX"]),
    "Mercedes-Benz": ("مرسيدس بنز", ["C-Class", "E-Class", "S-Class", "G-Class"]),
    "BMW": ("بي إم دبليو", ["3 Series", "5 Series", "X5"]),
    "Hyundai": ("هيونداي", ["Elantra", "Sonata", "Tucson"]),
    "Kia": ("كيا", ["Sportage", "Sorento", "K5"]),
    "Ford": ("فورد", ["F-150", "Explorer", "Mustang"]),
}

SETTINGS = {
    "default_country": {"code": "qa"},
    "listing_policy": {"reapprove_on_edit": True, "max_images": 20},
}


def run():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = 0
        for code, name, name_ar, currency, symbol, phone in COUNTRIES:
            country = db.query(Country).filter(Country.code == code).first()
            if not country:
                country = Country(
                    code=code, name=name, name_ar=name_ar, currency_code=currency,
                    currency_symbol=symbol, phone_code=phone, is_active=True,
                )
                db.add(country)
                db.flush()
                created += 1
            for city_name, city_ar in CITIES.get(code, []):
                exists = db.query(City).filter(City.country_id == country.id, City.name == city_name).first()
                if not exists:
                    db.add(City(country_id=country.id, name=city_name, name_ar=city_ar))
                    created += 1

        for brand_name, (brand_ar, models) in BRANDS.items():
            brand = db.query(Brand).filter(Brand.name == brand_name).first()
            if not brand:
                brand = Brand(name=brand_name, name_ar=brand_ar)
                db.add(brand)
                db.flush()
                created += 1
            for model_name in models:
                exists = db.query(CarModel).filter(CarModel.brand_id == brand.id, CarModel.name == model_name).first()
                if not exists:
                    db.add(CarModel(brand_id=brand.id, name=model_name))
                    created += 1

        for key, value in SETTINGS.items():
            if not db.query(WebsiteSetting).filter(WebsiteSetting.key == key).first():
                db.add(WebsiteSetting(key=key, value=value))
                created += 1

        db.commit()
        print(f"Seeded {created} rows.")
    finally:
        db.close()


if __name__ == "__main__":
    run()
