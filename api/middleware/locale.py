from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import set_locale


def _best_language(accept_language: str) -> str:
    """Highest-q tag of an Accept-Language header ('en' when empty)."""
    best, best_q = "en", -1.0
    for part in accept_language.split(","):
        lang, _, params = part.strip().partition(";")
        if not lang:
            continue
        q = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                q = float(params[2:])
            except ValueError:
                q = 0.0
        if q > best_q:
            best, best_q = lang.strip(), q
    return best


class LocaleMiddleware(BaseHTTPMiddleware):
    """Select the message catalogue locale for the request.

    Priority: ?lang=xx > X-Lang > Accept-Language > 'en'.
    """

    async def dispatch(self, request: Request, call_next):
        lang = request.query_params.get("lang") or request.headers.get("X-Lang")
        if not lang:
            lang = _best_language(request.headers.get("Accept-Language", ""))
        locale = lang.replace("-", "_")
        set_locale(locale)
        request.state.locale = locale
        return await call_next(request)
