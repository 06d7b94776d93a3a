from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from orders_service.config import get_settings
from orders_service.deps import get_store
from orders_service.store import OrderStore

ADMIN_ROLE = "admin"


def current_user_id(authorization: str = Header(None)) -> str:
    secret = get_settings().require("jwt_secret")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError(scheme)
        claims = jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
        return str(claims["sub"])
    except (AttributeError, ValueError, KeyError, JWTError):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(
    user_id: str = Depends(current_user_id),
    store: OrderStore = Depends(get_store),
) -> str:
    if store.get_role(user_id) != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Forbidden - Admin access required")
    return user_id
