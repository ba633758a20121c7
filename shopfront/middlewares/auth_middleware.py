from typing import Iterable, Optional
from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from shopfront.auth.dependencies import Authentication
from shopfront.common.utils import build_error, json_error
from shopfront.middlewares.constants import logger


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Decodes the bearer JWT and stashes its claims on ``request.state``.

    ``paths`` are skipped entirely, ``maybe_auth_paths`` accept anonymous callers
    (guest flows) but still read a token when one is sent. User lookup happens in
    the ``get_requester`` dependency.
    """

    def __init__(self, app, *, paths: Iterable[str], maybe_auth_paths: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.paths = tuple(paths)
        self.maybe_auth_paths = tuple(maybe_auth_paths or ())

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if any(path.startswith(p) for p in self.paths):
            return await call_next(request)

        optional = any(path.startswith(p) for p in self.maybe_auth_paths)
        has_auth_header = bool(request.headers.get("authorization"))

        if optional and not has_auth_header:
            return await call_next(request)

        logger.debug("auth.middleware.attempt", extra={"path": path, "method": request.method})

        try:
            auth_token = await Authentication()(request)
        except HTTPException as e:
            logger.warning("auth.middleware.failed", extra={"reason": e.detail, "path": path, "method": request.method})
            payload = build_error(code="INVALID_AUTH", details={"message": "Missing or Invalid Auth Headers"})
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        request.state.user_public_id = auth_token.get("sub")
        request.state.user_roles = auth_token.get("roles") or []

        return await call_next(request)
