"""
Access token issuing and parsing.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

import jwt
from shared.logging import get_logger
from shared.errors import AuthenticationError
from ..membership.models import User


class TokenIssuer:
    """Issues and parses HMAC-signed JWTs for users."""

    def __init__(self, secret: str, algorithm: str = "HS256", expires_seconds: int = 86400):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_seconds = expires_seconds
        self.logger = get_logger("membership.security.tokens")

    def issue(self, user: User, now: Optional[datetime] = None) -> str:
        """Issue a token for ``user``."""
        now = now or datetime.now(timezone.utc)
        claims = {
            "sub": str(user.id),
            "username": user.username,
            "role": user.user_role.value,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expires_seconds)).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def parse(self, token: str) -> Dict[str, Any]:
        """Validate ``token`` and return its claims."""
        if token.startswith("Bearer "):
            token = token[7:]

        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "jti", "exp"]}
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError as e:
            self.logger.info("Rejected token", error=str(e))
            raise AuthenticationError("Invalid token")

    def remaining_seconds(self, claims: Dict[str, Any], now: Optional[datetime] = None) -> int:
        """Seconds until the token carrying ``claims`` expires."""
        now = now or datetime.now(timezone.utc)
        return max(0, int(claims["exp"] - now.timestamp()))
