from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class LoginResponse(BaseModel):
    message: str
    token: str
    admin: dict[str, Any]


class EventRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    date: Optional[dt.date] = None
    venue: Optional[str] = Field(default=None, max_length=255)


class SpeakerForm(BaseModel):
    """Text fields of a speaker multipart form."""
    name: str = Field(min_length=1, max_length=255)
    bio: Optional[str] = None
    company: Optional[str] = Field(default=None, max_length=255)
    position: Optional[str] = Field(default=None, max_length=255)
