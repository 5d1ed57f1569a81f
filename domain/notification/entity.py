"""
User notification record (deduplicated by idempotency key).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Notification:
    id: Optional[str]
    user_id: str
    event: str
    title: str
    body: str
    idempotency_key: str
    action_url: Optional[str] = None
    payload: dict = field(default_factory=dict)
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
