from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from .jwt_handler import verify_access_token
from .principal import Principal

# Defines the expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

async def get_current_principal(request: Request, token: str = Depends(oauth2_scheme)) -> Principal:
    """Dependency to validate the JWT and return the acting Principal (sub + role)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None:
        raise credentials_exception

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise credentials_exception

    try:
        principal = Principal(id=int(user_id), role=str(role))
    except ValueError:
        raise credentials_exception

    # Store in request state for downstream use (like rate limiting)
    request.state.user_id = principal.id
    return principal
