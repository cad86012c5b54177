from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class CarBase(BaseModel):
    mileage: Optional[int] = Field(default=None, ge=0)
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: Optional[str] = None
    description_ar: Optional[str] = None
    exterior_color: Optional[str] = None
    interior_color: Optional[str] = None
    cylinders: Optional[int] = Field(default=None, ge=0, le=16)
    country_id: Optional[int] = None
    city_id: Optional[int] = None

    @field_validator('description', 'description_ar', 'exterior_color', 'interior_color', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('currency_code', mode='before')
    @classmethod
    def upper_currency(cls, v):
        if v is None or not str(v).strip():
            return None
        return str(v).strip().upper()


class CarCreate(CarBase):
    brand_id: int
    model_id: int
    year: int
    mileage: int = Field(default=0, ge=0)
    price: Decimal = Field(gt=0)
    fuel_type: str
    gearbox_type: str
    body_type: str
    condition: str


class CarUpdate(CarBase):
    brand_id: Optional[int] = None
    model_id: Optional[int] = None
    year: Optional[int] = None
    price: Optional[Decimal] = Field(default=None, gt=0)
    fuel_type: Optional[str] = None
    gearbox_type: Optional[str] = None
    body_type: Optional[str] = None
    condition: Optional[str] = None
    expected_version: Optional[int] = None


class ModerationRequest(BaseModel):
    status: str
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ReportCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    country_code: Optional[str] = Field(default=None, min_length=2, max_length=2)

    @field_validator('country_code', mode='before')
    @classmethod
    def lower_code(cls, v):
        if v is None or not str(v).strip():
            return None
        return str(v).strip().lower()
