"""Edge middleware that attaches Personalize variants to page requests."""

from __future__ import annotations

import logging
from typing import Callable
from urllib.parse import urlencode

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .bridge import PersonalizeBridge, PersonalizeHandle

logger = logging.getLogger(__name__)

VARIANT_QUERY_PARAM = "personalize_variants"
USER_UID_COOKIE = "cs-personalize-user-uid"
USER_UID_COOKIE_MAX_AGE = 60 * 60 * 24 * 365
ASSET_PREFIXES = ("/_next/", "/static/", "/styles/", "/images/")


def is_asset_path(path: str) -> bool:
    return path.startswith(ASSET_PREFIXES) or "." in path


class PersonalizeEdgeMiddleware(BaseHTTPMiddleware):
    """Adds the visitor's variant selector to each page request.

    Asset requests pass straight through. Personalization failures fall back
    to forwarding the original request, so traffic is never blocked.

    Args:
        app: The ASGI application.
        bridge: Bridge used to open a request-scoped Personalize handle.
    """

    def __init__(self, app, bridge: PersonalizeBridge):
        super().__init__(app)
        self.bridge = bridge

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if is_asset_path(path):
            return await call_next(request)

        try:
            handle: PersonalizeHandle = await run_in_threadpool(
                self.bridge.init_for_request, request.cookies.get(USER_UID_COOKIE)
            )
            variant_param = handle.variant_param()
        except Exception as exc:
            logger.warning("Edge personalization skipped for %s: %s", path, exc)
            return await call_next(request)

        if variant_param:
            params = [(k, v) for k, v in request.query_params.multi_items() if k != VARIANT_QUERY_PARAM]
            params.append((VARIANT_QUERY_PARAM, variant_param))
            request.scope["query_string"] = urlencode(params).encode("latin-1")
            logger.info("Added variant %s to %s", variant_param, path)

        response = await call_next(request)
        response.set_cookie(
            USER_UID_COOKIE,
            handle.user_uid,
            max_age=USER_UID_COOKIE_MAX_AGE,
            path="/",
            samesite="lax",
        )
        response.headers["cache-control"] = "no-store"
        return response
