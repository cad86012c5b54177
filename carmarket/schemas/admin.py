from typing import Optional, Literal
from pydantic import BaseModel


class RoleUpdate(BaseModel):
    role: Literal["normal_user", "dealer", "admin"]


class ActiveUpdate(BaseModel):
    is_active: bool


class ReportStatusUpdate(BaseModel):
    status: Literal["pending", "reviewed", "resolved", "dismissed"]
    notes: Optional[str] = None
