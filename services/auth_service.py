from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from werkzeug.security import check_password_hash

from models.entities import utcnow
from services.cache_service import CacheService
from services.errors import AuthenticationError, CacheError
from services.repository_service import RepositoryService
from utils.config import Settings
from utils.jwt_helper import decode_token, generate_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, passed explicitly into service calls."""
    user_id: str


@dataclass(frozen=True)
class TokenDetails:
    access_token: str
    refresh_token: str
    user_id: str


class AuthService:
    CACHE_PREFIX = "auth:token:"

    def __init__(self, repo: RepositoryService, settings: Settings, cache: Optional[CacheService] = None):
        self.repo = repo
        self.secret = settings.TOKEN_SECRET
        self.expire_minutes = settings.JWT_EXPIRE_MINUTES
        self.refresh_ttl = timedelta(days=settings.REFRESH_TTL_DAYS)
        self.cache = cache

    def login(self, email: str, password: str) -> TokenDetails:
        creds = self.repo.get_credentials_by_email(email)
        if not creds or not check_password_hash(creds["password_hash"], password):
            raise AuthenticationError("Invalid credentials")

        access_token = generate_token(creds["id"], self.secret, self.expire_minutes)
        raw_refresh = secrets.token_urlsafe(48)
        self.repo.add_refresh_token(creds["id"], raw_refresh, utcnow() + self.refresh_ttl)
        logger.info("user %s logged in", creds["id"])
        return TokenDetails(access_token=access_token, refresh_token=raw_refresh, user_id=creds["id"])

    def refresh(self, raw_refresh: str) -> TokenDetails:
        # sliding expiry: the refresh value is kept, only its expiry moves
        now = utcnow()
        user_id = self.repo.touch_refresh_token(raw_refresh, now, now + self.refresh_ttl)
        if not user_id:
            raise AuthenticationError("Refresh token invalid or expired")
        access_token = generate_token(user_id, self.secret, self.expire_minutes)
        return TokenDetails(access_token=access_token, refresh_token=raw_refresh, user_id=user_id)

    def logout(self, raw_refresh: Optional[str]) -> None:
        if raw_refresh:
            self.repo.delete_refresh_token(raw_refresh)

    def _cache_key(self, token: str) -> str:
        return self.CACHE_PREFIX + hashlib.sha256(token.encode("utf-8")).hexdigest()

    def authenticate(self, token: Optional[str]) -> Optional[Principal]:
        """Resolve a bearer token to a Principal, memoizing verified tokens in the cache."""
        if not token:
            return None

        key = self._cache_key(token)
        if self.cache is not None:
            try:
                user_id, found = self.cache.get(key)
                if found:
                    return Principal(user_id=user_id)
            except CacheError as exc:
                logger.warning("token cache lookup failed: %s", exc)

        claims = decode_token(token, self.secret)
        user_id = claims.get("user_id") if claims else None
        if not user_id:
            logger.info("An error occurred while validating token")
            return None

        # the memo must not outlive the token itself
        ttl = min(self.cache.ttl, int(claims.get("exp", 0) - time.time())) if self.cache is not None else 0
        if ttl > 0:
            try:
                self.cache.set(key, user_id, ttl=ttl)
            except CacheError as exc:
                logger.warning("token cache store failed: %s", exc)
        return Principal(user_id=user_id)
