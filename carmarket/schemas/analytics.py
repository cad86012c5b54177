from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator


class EventIn(BaseModel):
    event: str = Field(min_length=1, max_length=50)
    data: Optional[Dict[str, Any]] = None
    language: Optional[str] = Field(default=None, max_length=10)
    page_url: Optional[str] = Field(default=None, max_length=1024)


class PageViewIn(BaseModel):
    country_code: str = Field(alias="countryCode", min_length=2, max_length=8)
    page_type: str = Field(alias="pageType", min_length=1, max_length=50)
    entity_id: Optional[str] = Field(default=None, alias="entityId", max_length=64)

    model_config = {"populate_by_name": True}

    @field_validator('entity_id', mode='before')
    @classmethod
    def stringify(cls, v):
        return None if v is None else str(v)
