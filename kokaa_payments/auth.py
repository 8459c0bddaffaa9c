from fastapi import Depends, Header, HTTPException
from jose import jwt

from kokaa_payments.config import Settings, get_settings


def verify_token(
    authorization: str = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Validate the BaaS session JWT and return the user id (``sub``)."""
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer" or not settings.jwt_secret:
            raise Exception()
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
        user_id = claims["sub"]
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return user_id
