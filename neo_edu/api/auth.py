import logging
from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, constr

from neo_edu.core.auth import create_token
from neo_edu.core.cache import RedisCache, get_cache
from neo_edu.core.config import Settings, get_settings
from neo_edu.core.errors import RateLimitedError

logger = logging.getLogger(__name__)

router = APIRouter()


class DevLogin(BaseModel):
    user_id: constr(min_length=1, max_length=255)
    roles: List[Literal["student", "instructor", "admin"]] = ["student"]


@router.post("/dev-login")
def dev_login(payload: DevLogin, request: Request, settings: Settings = Depends(get_settings),
              cache: RedisCache = Depends(get_cache)):
    """Issue a token and session for local use. Real sign-in lives in the accounts service."""
    if settings.is_production():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    client_ip = request.client.host if request.client else "unknown"
    allowed, _ = cache.check_rate_limit(f"login:{client_ip}", settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_WINDOW)
    if not allowed:
        logger.warning(f"Login rate limit hit for {client_ip}")
        raise RateLimitedError("Too many login attempts, try again later")

    token = create_token(payload.user_id, payload.roles, settings)
    cache.set_session(token, payload.user_id, {"roles": payload.roles})
    return {"access_token": token, "token_type": "bearer", "roles": payload.roles}
