"""Authentication dependencies."""

from datetime import UTC, datetime

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from app.core.config import settings
from app.core.exceptions import AuthorizationException, UnauthorizedException
from app.utils.jwt import verify_access_token

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


class TokenData:
    """Token data container for authenticated users."""

    def __init__(self, user_id: str, email: str, role: str, expires_at: datetime):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.expires_at = expires_at

    @property
    def is_admin(self) -> bool:
        return self.role in settings.ADMIN_ROLES


def get_authorization_header(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """Extract the bearer token from the Authorization header."""
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials or None


async def get_current_user_token(
    token: str | None = Depends(get_authorization_header),
) -> TokenData:
    """
    Get current user from JWT token.

    Args:
        token: JWT token from authorization header

    Returns:
        TokenData object with user information

    Raises:
        UnauthorizedException: If token is missing, invalid or expired
    """
    if not token:
        raise UnauthorizedException("Authorization header missing")

    try:
        payload = verify_access_token(token)
    except PyJWTError as e:
        raise UnauthorizedException(f"Authentication failed: {str(e)}") from e

    user_id = payload.get("sub")
    email = payload.get("email")
    exp_timestamp = payload.get("exp")
    if not all([user_id, email, exp_timestamp]):
        raise UnauthorizedException("Invalid token payload")

    return TokenData(
        user_id=user_id,
        email=email,
        role=payload.get("role", "vendor"),
        expires_at=datetime.fromtimestamp(exp_timestamp, tz=UTC),
    )


def get_current_user_id(token_data: TokenData = Depends(get_current_user_token)) -> str:
    return token_data.user_id


def require_admin(
    token_data: TokenData = Depends(get_current_user_token),
) -> TokenData:
    """
    Require an admin role claim.

    Raises:
        AuthorizationException: If the caller is not an admin
    """
    if not token_data.is_admin:
        raise AuthorizationException("Admin access required")
    return token_data
