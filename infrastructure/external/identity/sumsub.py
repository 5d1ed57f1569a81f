"""
Sumsub applicant webhook verification.

Sumsub signs the raw body with HMAC and sends the hex digest in
``x-payload-digest``; ``x-payload-digest-alg`` names the hash.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Optional

from application.ports.identity import IdentityEvent
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import WebhookSecretMissingException, WebhookSignatureException
from infrastructure.external.payments.base import header_value


logger = get_logger(__name__)

DIGEST_ALGORITHMS = {
    "HMAC_SHA1_HEX": hashlib.sha1,
    "HMAC_SHA256_HEX": hashlib.sha256,
    "HMAC_SHA512_HEX": hashlib.sha512,
}
DEFAULT_DIGEST_ALGORITHM = "HMAC_SHA256_HEX"


def compute_digest(secret: str, body: bytes, algorithm: str = DEFAULT_DIGEST_ALGORITHM) -> str:
    digestmod = DIGEST_ALGORITHMS[algorithm]
    return hmac.new(secret.encode("utf-8"), body, digestmod).hexdigest()


def _first_str(*candidates: Any) -> Optional[str]:
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


class SumsubWebhookVerifier:
    provider = "identity"

    def __init__(
        self,
        secret: Optional[str] = None,
        *,
        allow_insecure: bool = False,
        production: bool = True,
    ) -> None:
        self._secret = secret
        self._allow_insecure = allow_insecure and not production
        self._production = production

    def verify(self, headers: dict[str, Any], body: bytes) -> None:
        digest = header_value(headers, "x-payload-digest")
        if not self._secret or not digest:
            if self._allow_insecure:
                logger.warning(
                    "identity_webhook_insecure_bypass",
                    secret_configured=bool(self._secret),
                    has_digest=bool(digest),
                )
                return
            if not self._secret:
                raise WebhookSecretMissingException(self.provider)
            raise WebhookSignatureException(self.provider, "missing_signature_header")

        algorithm = (header_value(headers, "x-payload-digest-alg") or DEFAULT_DIGEST_ALGORITHM).strip().upper()
        if algorithm not in DIGEST_ALGORITHMS:
            raise WebhookSignatureException(self.provider, "unsupported_algorithm")
        expected = compute_digest(self._secret, body, algorithm)
        if not hmac.compare_digest(expected, digest.strip().lower()):
            raise WebhookSignatureException(self.provider, "signature_mismatch")

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> IdentityEvent:
        self.verify(headers, body)
        try:
            payload = json.loads(body) if body else {}
        except ValueError as exc:
            raise WebhookSignatureException(self.provider, "malformed_payload") from exc
        if not isinstance(payload, dict):
            raise WebhookSignatureException(self.provider, "malformed_payload")

        applicant = _as_dict(payload.get("applicant"))
        review = _as_dict(payload.get("review"))
        review_result = _as_dict(payload.get("reviewResult"))
        event_id = _first_str(payload.get("correlationId")) or hashlib.sha256(body).hexdigest()
        return IdentityEvent(
            id=event_id,
            type=str(payload.get("type") or ""),
            external_user_id=_first_str(
                payload.get("externalUserId"),
                payload.get("applicantExternalId"),
                applicant.get("externalUserId"),
                review.get("externalUserId"),
            ),
            applicant_id=_first_str(
                payload.get("applicantId"),
                payload.get("applicant_id"),
                applicant.get("id"),
                applicant.get("applicantId"),
                review.get("applicantId"),
            ),
            review_status=_first_str(payload.get("reviewStatus")),
            review_answer=_first_str(review_result.get("reviewAnswer")),
            payload=payload,
        )


def get_identity_verifier() -> SumsubWebhookVerifier:
    return SumsubWebhookVerifier(
        payment_settings.identity.webhook_secret,
        allow_insecure=payment_settings.identity.allow_insecure_webhook,
        production=settings.is_production,
    )
