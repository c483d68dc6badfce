"""Pydantic schemas for the mail endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr


class MailSendResult(BaseModel):
    message_id: Optional[str] = None
    conversation_id: Optional[uuid.UUID] = None
    recipient: EmailStr
    subject: str
    sent_at: datetime
    attachment_count: int = 0


class MailStatus(BaseModel):
    configured: bool
    smtp_host: str
    smtp_port: int
    use_tls: bool
    sender: Optional[str] = None
    sender_name: str
    environment: str
    checked_at: datetime
    verified: Optional[bool] = None
    error: Optional[str] = None


class ProviderOut(BaseModel):
    provider: str
    display_name: str
    domains: list[str]
    smtp_host: str
    smtp_port: int
    app_password_required: bool
    app_password_url: Optional[str] = None
