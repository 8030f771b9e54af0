from fastapi import Header, HTTPException
from jose import JWTError, jwt

from aecoin_store import config


def get_current_user_id(authorization: str = Header(None)) -> str:
    """Returns the user id (``sub``) of a valid bearer token."""
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError("not a bearer token")
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
        user_id = claims.get("sub")
        if not user_id:
            raise ValueError("token has no subject")
        return str(user_id)
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
