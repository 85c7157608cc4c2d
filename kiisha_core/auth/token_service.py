"""
Portal token service.

Signs and verifies the bearer token carried in the portal_token cookie.
The token expires a fixed number of days after issue; activity does not
extend it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, TypedDict

import jwt
from loguru import logger

from kiisha_core.config import settings


class PortalTokenPayload(TypedDict, total=False):
    """Decoded portal token payload.

    Either portalUserId (canonical model) or customerUserId (legacy model)
    identifies the subject.
    """

    portalUserId: int
    customerUserId: int
    customerId: int
    email: str
    name: str
    role: str
    iat: int
    exp: int


class PortalTokenService:
    """Service for portal token generation and validation."""

    ALGORITHM = "HS256"

    def __init__(
        self,
        secret: str | None = None,
        ttl_days: int | None = None,
        cookie_name: str | None = None,
    ):
        """Initialize the token service.

        Args:
            secret: Signing secret. Defaults to settings.JWT_SECRET.
            ttl_days: Token lifetime. Defaults to settings.PORTAL_TOKEN_TTL_DAYS.
            cookie_name: Cookie carrying the token. Defaults to settings.PORTAL_COOKIE_NAME.
        """
        self.secret = secret or settings.JWT_SECRET
        self.ttl = timedelta(days=ttl_days or settings.PORTAL_TOKEN_TTL_DAYS)
        self.cookie_name = cookie_name or settings.PORTAL_COOKIE_NAME
        self._cookie_pattern = re.compile(rf"(?:^|;)\s*{re.escape(self.cookie_name)}=([^;]+)")

        if not self.secret:
            raise ValueError("JWT_SECRET must be configured")

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def create_token(self, payload: Mapping[str, Any]) -> str:
        """Sign a portal token.

        Args:
            payload: Identity claims (portalUserId or customerUserId, email,
                optional name and role). Any iat/exp present is replaced.

        Returns:
            Encoded JWT string.
        """
        now = datetime.now(timezone.utc)
        claims = {key: value for key, value in payload.items() if key not in ("iat", "exp")}
        claims["iat"] = int(now.timestamp())
        claims["exp"] = int((now + self.ttl).timestamp())
        return jwt.encode(claims, self.secret, algorithm=self.ALGORITHM)

    def verify_token(self, token: str | None) -> PortalTokenPayload | None:
        """Verify signature and expiry of a portal token.

        Never raises.

        Args:
            token: The JWT string.

        Returns:
            Decoded payload if valid, None otherwise.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Portal token expired")
            return None
        except jwt.PyJWTError:
            return None

        if not isinstance(payload, dict) or not isinstance(payload.get("email"), str):
            return None
        return PortalTokenPayload(**payload)

    def extract_token(self, cookies: str | Mapping[str, str] | None) -> str | None:
        """Pull the portal token out of a Cookie header or a cookie mapping.

        Args:
            cookies: Raw Cookie header value, or a name -> value mapping.

        Returns:
            The token string, or None if the cookie is absent.
        """
        if not cookies:
            return None
        if isinstance(cookies, Mapping):
            return cookies.get(self.cookie_name) or None

        match = self._cookie_pattern.search(cookies)
        return match.group(1).strip() if match else None
