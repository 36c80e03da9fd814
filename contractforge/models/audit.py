"""Audit event model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AuditCategory(str, Enum):
    DATA = "DATA"
    SYSTEM = "SYSTEM"
    SECURITY = "SECURITY"


class AuditAction(str, Enum):
    CONTRACT_GENERATED = "CONTRACT_GENERATED"
    CONTRACT_GENERATION_FAILED = "CONTRACT_GENERATION_FAILED"
    BULK_CONTRACT_GENERATION = "BULK_CONTRACT_GENERATION"
    BULK_CONTRACT_CLEAR = "BULK_CONTRACT_CLEAR"
    TEMPLATE_ASSIGNED = "TEMPLATE_ASSIGNED"
    TEMPLATE_UNASSIGNED = "TEMPLATE_UNASSIGNED"
    BULK_TEMPLATE_ASSIGNMENT = "BULK_TEMPLATE_ASSIGNMENT"
    BULK_TEMPLATE_CLEAR = "BULK_TEMPLATE_CLEAR"
    SMART_TEMPLATE_ASSIGNMENT = "SMART_TEMPLATE_ASSIGNMENT"


class AuditEvent(BaseModel):
    """A single audit record as handed to a sink."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    action: str
    severity: AuditSeverity = AuditSeverity.LOW
    category: AuditCategory = AuditCategory.DATA
    resource_type: str
    resource_id: str
    metadata: dict[str, Any] = {}
    timestamp_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
