from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator


class DealershipBase(BaseModel):
    business_name_ar: Optional[str] = None
    owner_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    description_ar: Optional[str] = None
    location: Optional[str] = None
    location_ar: Optional[str] = None
    business_type: Optional[str] = None
    dealership_type: Optional[str] = None
    country_id: Optional[int] = None
    city_id: Optional[int] = None

    @field_validator('business_name_ar', 'owner_name', 'phone', 'description', 'description_ar', 'location', 'location_ar', 'business_type', 'dealership_type', 'email', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class DealershipSubmit(DealershipBase):
    business_name: str = Field(min_length=1, max_length=255)
    business_type: str = "Dealership"
    dealership_type: str = "Private"

    @field_validator('business_name', mode='before')
    @classmethod
    def strip_name(cls, v):
        return str(v).strip() if v is not None else v


class DealershipUpdate(DealershipBase):
    business_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    expected_version: Optional[int] = None


class ReviewRequest(BaseModel):
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None
