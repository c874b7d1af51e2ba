from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from .jwt_handler import verify_access_token

def user_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    Customers placing orders are throttled per user id taken from the bearer
    token; unauthenticated callers fall back to their IP address.
    """
    auth_header = request.headers.get("Authorization")

    if auth_header and auth_header.startswith("Bearer "):
        payload = verify_access_token(auth_header.split(" ", 1)[1])
        if payload and "sub" in payload:
            return f"user:{payload['sub']}"

    return f"ip:{get_remote_address(request)}"

limiter = Limiter(key_func=user_id_or_ip)
