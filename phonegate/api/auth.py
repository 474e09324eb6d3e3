from fastapi import Header, HTTPException

from phonegate.settings import settings
from phonegate.store.models import UserSession


def require_api_key(x_api_key: str = Header(default="", alias="x-api-key")):
    """
    - If API_KEY env is empty: allow all requests.
    - If API_KEY env is set: require matching x-api-key header.
    """
    if not settings.API_KEY:
        return
    if x_api_key != settings.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def current_user(
    x_user_id: str = Header(default="", alias="x-user-id"),
    x_user_phone: str = Header(default="", alias="x-user-phone"),
    x_user_phone_verified: str = Header(default="", alias="x-user-phone-verified"),
) -> UserSession:
    """The auth layer in front of this service forwards the caller's identity as headers."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return UserSession(
        userId=user_id,
        phoneOnFile=(x_user_phone or "").strip() or None,
        phoneVerified=(x_user_phone_verified or "").strip().lower() in ("1", "true", "yes"),
    )
