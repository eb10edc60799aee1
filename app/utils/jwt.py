"""Access-token verification for tokens issued by the marketplace auth service."""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import PyJWTError

from app.core.config import settings


class JWTManager:
    """Decodes and validates marketplace access tokens."""

    ACCESS_TOKEN_TYPE = "access"
    ACCESS_TOKEN_EXPIRE_MINUTES = 15

    def __init__(self):
        self.secret_key = settings.SECRET_KEY
        self.algorithm = settings.ALGORITHM
        self.issuer = settings.TOKEN_ISSUER
        self.audience = settings.TOKEN_AUDIENCE

    def create_access_token(
        self,
        user_id: str,
        email: str,
        role: str = "vendor",
        expires_delta: timedelta | None = None,
    ) -> str:
        """
        Create an access token with the claims this service reads.

        Used for service-to-service calls and tests; end-user tokens come
        from the auth service.
        """
        now = datetime.now(UTC)
        payload = {
            "iat": now,
            "nbf": now,
            "exp": now + (expires_delta or timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iss": self.issuer,
            "aud": self.audience,
            "sub": user_id,
            "email": email,
            "role": role,
            "type": self.ACCESS_TOKEN_TYPE,
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify and decode an access token.

        Args:
            token: JWT token to verify

        Returns:
            Decoded token payload

        Raises:
            PyJWTError: If token is invalid, expired, or malformed
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "sub"]},
            )
        except PyJWTError as e:
            raise PyJWTError(f"Token verification failed: {str(e)}") from e

        if payload.get("type", self.ACCESS_TOKEN_TYPE) != self.ACCESS_TOKEN_TYPE:
            raise PyJWTError(f"Invalid token type. Expected: {self.ACCESS_TOKEN_TYPE}")
        return payload


jwt_manager = JWTManager()


def create_access_token(
    user_id: str, email: str, role: str = "vendor", expires_delta: timedelta | None = None
) -> str:
    return jwt_manager.create_access_token(user_id, email, role, expires_delta)


def verify_access_token(token: str) -> dict[str, Any]:
    return jwt_manager.verify_token(token)
