"""FastAPI dependencies for the caller identity."""

from fastapi import HTTPException, Request

from scopeforge.auth.types import AuthContext


def get_auth_context(request: Request) -> AuthContext | None:
    """Soft dependency - the AuthContext the host app's middleware stored, if any."""
    return getattr(request.state, "auth", None)


def require_authenticated(request: Request) -> AuthContext:
    """Dependency that requires authentication.

    Raises:
        HTTPException 401 if no AuthContext was stored on the request
    """
    auth = get_auth_context(request)
    if auth is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth
