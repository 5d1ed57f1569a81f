from .sumsub import SumsubWebhookVerifier, get_identity_verifier

__all__ = ["SumsubWebhookVerifier", "get_identity_verifier"]
