from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1, max_length=255)
    phone_number: Optional[str] = None
    country_id: Optional[int] = None
    city_id: Optional[int] = None

    @field_validator("full_name", "phone_number", mode="before")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    role: str
    country_id: Optional[int] = None
    city_id: Optional[int] = None
    has_dealership: bool = False
    dealership_status: Optional[str] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = None
    country_id: Optional[int] = None
    city_id: Optional[int] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)
