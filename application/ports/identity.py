"""
Identity-verification provider port.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class IdentityEvent(BaseModel):
    """Applicant review event, already authenticated."""

    id: str
    type: str
    external_user_id: Optional[str] = None
    applicant_id: Optional[str] = None
    review_status: Optional[str] = None
    review_answer: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class IdentityWebhookVerifier(Protocol):
    provider: str

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> IdentityEvent: ...
