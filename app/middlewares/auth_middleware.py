from typing import Callable, Optional

from fastapi import Depends, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.utils.errors import AuthenticationError, AuthorizationError
from app.utils.responses import ResponseBuilder
from app.utils.logging import get_logger

logger = get_logger()

USER_ID_HEADER = "X-User-ID"
USER_TYPE_HEADER = "X-User-Type"
USERNAME_HEADER = "X-Username"


class AuthState:
    """Authentication state to be stored in request.state"""

    def __init__(
        self,
        user_id: str,
        username: str,
        user_type: str,
        is_authenticated: bool = True,
    ):
        self.user_id = user_id
        self.username = username
        self.user_type = user_type
        self.is_authenticated = is_authenticated


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Reads the caller identity forwarded by the host application's gateway.

    Tokens are verified upstream; this service only trusts the identity
    headers and rejects requests that arrive without them.
    """

    EXCLUDED_PATHS = {
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    def __init__(self, app, excluded_paths: Optional[set] = None):
        super().__init__(app)
        self.excluded_paths = set(self.EXCLUDED_PATHS)
        if excluded_paths:
            self.excluded_paths.update(excluded_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._should_skip_auth(request):
            return await call_next(request)

        user_id = request.headers.get(USER_ID_HEADER)
        if not user_id:
            logger.warning(f"Rejected unauthenticated request to {request.url.path}")
            return ResponseBuilder.error(
                request=request,
                message="Not authenticated",
                error_code="UNAUTHORIZED",
                status_code=401,
            )

        request.state.auth = AuthState(
            user_id=user_id,
            username=request.headers.get(USERNAME_HEADER, user_id),
            user_type=request.headers.get(USER_TYPE_HEADER, "user"),
        )
        return await call_next(request)

    def _should_skip_auth(self, request: Request) -> bool:
        return request.method == "OPTIONS" or self._is_excluded_path(request.url.path)

    def _is_excluded_path(self, path: str) -> bool:
        return any(path.startswith(excluded) for excluded in self.excluded_paths)


# Dependency for getting current user from request state
def get_current_user(request: Request) -> AuthState:
    """Dependency to get current authenticated user from request state"""
    auth_state = getattr(request.state, "auth", None)

    if not auth_state or not auth_state.is_authenticated:
        raise AuthenticationError("Not authenticated", "NOT_AUTHENTICATED")

    return auth_state


# Dependency for requiring specific user types
def require_user_type(*allowed_types: str):
    """Create dependency that requires specific user types"""

    def check_user_type(
        current_user: AuthState = Depends(get_current_user),
    ) -> AuthState:
        if current_user.user_type not in allowed_types:
            raise AuthorizationError(
                "Insufficient permissions", "INSUFFICIENT_PERMISSIONS"
            )
        return current_user

    return check_user_type


require_admin = require_user_type("admin")
