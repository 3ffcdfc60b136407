from typing import Annotated, Optional
from fastapi import Depends, Request, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.auth.service.auth_service import AuthService


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    """Get auth service from app state."""
    auth_service = getattr(request.app.state, "auth_service", None)
    if auth_service is None:
        raise HTTPException(status_code=500, detail="Service credentials missing")
    return auth_service


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Dependency to get the current authenticated user from the bearer token.

    Usage:
        @router.post("/protected")
        async def protected_route(current_user: dict = Depends(get_current_user)):
            user_id = current_user["user_id"]
            ...
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    auth_service = get_auth_service(request)
    try:
        return await auth_service.verify_token(credentials.credentials)
    except HTTPException as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail, headers={"WWW-Authenticate": "Bearer"})


CurrentUserDep = Annotated[dict, Depends(get_current_user)]
