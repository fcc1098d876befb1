from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from qms_webhooks.core.events import KNOWN_ENTITY_TYPES, KNOWN_EVENT_TYPES
from qms_webhooks.services.webhook_payload import is_reserved_header

_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def _check_url(value: str) -> str:
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc or not parts.hostname:
        raise ValueError("url must be an absolute http(s) URL")
    return value


def _check_events(value: Any) -> list[str]:
    events = value if isinstance(value, list) else [value]
    invalid = [e for e in events if e not in KNOWN_EVENT_TYPES]
    if invalid:
        raise ValueError(f"Invalid events: {', '.join(map(str, invalid))}")
    if not events:
        raise ValueError("at least one event is required")
    return events


def _check_headers(value: dict[str, str] | None) -> dict[str, str] | None:
    if value is None:
        return None
    for name, v in value.items():
        if not _HEADER_NAME.match(name):
            raise ValueError(f"invalid header name: {name!r}")
        if is_reserved_header(name):
            raise ValueError(f"header {name} is set by the webhook sender and cannot be overridden")
        if "\r" in v or "\n" in v:
            raise ValueError(f"invalid value for header {name}")
    return value


class RetryPolicy(BaseModel):
    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: int = Field(default=60, ge=10, le=3600)


class SubscriptionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    url: str = Field(max_length=2000)
    events: list[str]
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    custom_headers: dict[str, str] | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, v: str) -> str:
        return _check_url(v)

    @field_validator("events", mode="before")
    @classmethod
    def _events(cls, v: Any) -> list[str]:
        return _check_events(v)

    @field_validator("custom_headers")
    @classmethod
    def _headers(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        return _check_headers(v)


class SubscriptionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    url: str | None = Field(default=None, max_length=2000)
    events: list[str] | None = None
    active: bool | None = None
    retry_policy: RetryPolicy | None = None
    custom_headers: dict[str, str] | None = None

    @field_validator("url")
    @classmethod
    def _url(cls, v: str | None) -> str | None:
        return None if v is None else _check_url(v)

    @field_validator("events", mode="before")
    @classmethod
    def _events(cls, v: Any) -> list[str] | None:
        return None if v is None else _check_events(v)

    @field_validator("custom_headers")
    @classmethod
    def _headers(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        return _check_headers(v)


class SubscriptionOut(BaseModel):
    id: str
    name: str
    url: str
    secret: str
    events: list[str]
    active: bool
    retry_policy: RetryPolicy
    custom_headers: dict[str, str] | None
    created_by: str | None
    created_at: datetime | None
    updated_at: datetime | None
    last_triggered_at: datetime | None


class SubscriptionCreatedOut(BaseModel):
    id: str
    secret: str
    message: str = "Webhook subscription created successfully"


class SecretRegeneratedOut(BaseModel):
    id: str
    secret: str
    message: str = "Webhook secret regenerated successfully"


class MessageOut(BaseModel):
    message: str


class DeliveryOut(BaseModel):
    id: str
    subscription_id: str
    event_type: str
    entity_type: str
    entity_id: int
    request_url: str
    request_payload: str
    request_headers: dict[str, str] | None = None
    response_status: int | None
    response_body: str | None
    response_time_ms: int | None
    attempt: int
    max_attempts: int
    next_retry_at: datetime | None
    status: str
    error_message: str | None
    created_at: datetime | None
    delivered_at: datetime | None


class DeliveryStatisticsOut(BaseModel):
    total: int
    success: int
    failed: int
    pending: int
    retrying: int
    success_rate: float


class TestDeliveryOut(BaseModel):
    success: bool
    message: str
    response_status: int | None
    response_time_ms: int | None


class RetryTriggeredOut(BaseModel):
    message: str
    delivery_id: str
    status: str | None


class PublishEventIn(BaseModel):
    event_type: str
    entity_type: str
    entity_id: int
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_type")
    @classmethod
    def _event(cls, v: str) -> str:
        if v not in KNOWN_EVENT_TYPES:
            raise ValueError(f"unknown event type: {v}")
        return v

    @field_validator("entity_type")
    @classmethod
    def _entity(cls, v: str) -> str:
        if v not in KNOWN_ENTITY_TYPES:
            raise ValueError(f"unknown entity type: {v}")
        return v


class PublishBranchOut(BaseModel):
    subscription_id: str
    delivery_id: str | None
    status: str | None
    error: str | None


class PublishEventOut(BaseModel):
    matched: int
    branches: list[PublishBranchOut]


class RetryTickOut(BaseModel):
    due: int
    processed: int
    errors: int
    statuses: dict[str, int]
