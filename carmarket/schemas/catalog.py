from decimal import Decimal
from typing import Optional, Any
from pydantic import BaseModel, Field, field_validator


class BrandIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    name_ar: Optional[str] = None
    logo_url: Optional[str] = None


class BrandUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name_ar: Optional[str] = None
    logo_url: Optional[str] = None


class ModelIn(BaseModel):
    brand_id: int
    name: str = Field(min_length=1, max_length=100)
    name_ar: Optional[str] = None


class ModelUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name_ar: Optional[str] = None


class CountryIn(BaseModel):
    code: str = Field(min_length=2, max_length=2)
    name: str
    name_ar: Optional[str] = None
    currency_code: str = Field(min_length=3, max_length=3)
    currency_symbol: Optional[str] = None
    currency_name: Optional[str] = None
    currency_name_ar: Optional[str] = None
    phone_code: Optional[str] = None
    is_active: bool = True

    @field_validator('code', mode='before')
    @classmethod
    def lower_code(cls, v):
        return str(v).strip().lower() if v is not None else v

    @field_validator('currency_code', mode='before')
    @classmethod
    def upper_currency(cls, v):
        return str(v).strip().upper() if v is not None else v


class CountryUpdate(BaseModel):
    name: Optional[str] = None
    name_ar: Optional[str] = None
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    currency_symbol: Optional[str] = None
    currency_name: Optional[str] = None
    currency_name_ar: Optional[str] = None
    phone_code: Optional[str] = None
    is_active: Optional[bool] = None


class CityIn(BaseModel):
    country_id: int
    name: str = Field(min_length=1, max_length=100)
    name_ar: Optional[str] = None
    is_active: bool = True


class CityUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name_ar: Optional[str] = None
    is_active: Optional[bool] = None


class CurrencyRateIn(BaseModel):
    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)
    rate: Decimal = Field(gt=0)

    @field_validator('from_currency', 'to_currency', mode='before')
    @classmethod
    def upper_currency(cls, v):
        return str(v).strip().upper() if v is not None else v


class SettingIn(BaseModel):
    value: Any = None
