"""Typed shapes of the payloads exchanged with the message store.

Store JSON uses camelCase (and Mongo's ``_id``); models are populated by
alias at the boundary and by field name everywhere else.
"""

from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class Message(BaseModel):
    """A message between two doctors. Only ``is_read`` ever changes, and only
    by copying the model."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="_id")
    sender_id: str = Field(alias="senderId")
    receiver_id: str = Field(alias="receiverId")
    body: str = Field(alias="message")
    created_at: AwareDatetime = Field(alias="createdAt")
    is_read: bool = Field(False, alias="isRead")


class ConversationSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    counterpart_id: str = Field(alias="_id")
    last_message: Message | None = Field(None, alias="lastMessage")
    unread_count: int = Field(0, alias="unreadCount", ge=0)


class Notification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    title: str
    message: str
    created_at: AwareDatetime = Field(alias="createdAt")
    is_read: bool = Field(False, alias="isRead")
    patient_id: str | None = Field(None, alias="patientId")
    appointment_id: str | None = Field(None, alias="appointmentId")
    prescription_id: str | None = Field(None, alias="prescriptionId")


class NotificationPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notifications: list[Notification]
    count: int = 0
    unread_count: int = Field(0, alias="unreadCount", ge=0)
