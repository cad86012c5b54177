from datetime import datetime
from typing import Optional, List, Literal, Union, Annotated

from pydantic import BaseModel, EmailStr, Field, field_validator


class NotificationItem(BaseModel):
    kind: Literal["notification"] = "notification"
    id: int
    title: str
    message: str
    type: str
    link: Optional[str] = None
    is_read: bool
    created_at: datetime


class MessageReply(BaseModel):
    id: int
    message: str
    name: Optional[str] = None
    sender_id: Optional[str] = None
    created_at: datetime


class MessageThread(BaseModel):
    kind: Literal["message_thread"] = "message_thread"
    id: int
    subject: Optional[str] = None
    message: str
    name: str
    email: str
    status: str
    is_read: bool
    created_at: datetime
    replies: List[MessageReply] = []


InboxItem = Annotated[Union[NotificationItem, MessageThread], Field(discriminator="kind")]


class InboxResponse(BaseModel):
    items: List[InboxItem]
    unread: int


class ContactMessageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = None
    subject: Optional[str] = Field(default=None, max_length=255)
    message: str = Field(min_length=1)

    @field_validator("name", "phone", "subject", "message", mode="before")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return None
        return str(v).strip()


class ContactReplyCreate(BaseModel):
    message: str = Field(min_length=1)


class ContactStatusUpdate(BaseModel):
    status: Literal["unread", "read"]
