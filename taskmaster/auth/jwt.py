"""JWT access token verification.

Tokens are issued by the platform's auth service with the same secret; the
billing core only reads ``sub`` (the profile id) and ``type == "access"``.
"""

import uuid

from jose import JWTError, jwt

from taskmaster.config import settings

ACCESS_TOKEN_TYPE = "access"


class TokenTypeError(JWTError):
    """A valid token that is not an access token (for example a refresh token)."""


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Raises:
        jose.JWTError: If the token is invalid, expired, or malformed.
    """
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def access_token_subject(token: str) -> uuid.UUID:
    """Verify an access token and return the profile id in its ``sub`` claim.

    Raises:
        TokenTypeError: If the token verifies but is not an access token.
        jose.JWTError: If the token is invalid, expired, or has no usable subject.
    """
    payload = decode_token(token)
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise TokenTypeError("Invalid token type")

    sub = payload.get("sub")
    if sub is None:
        raise JWTError("Token has no subject")
    try:
        return uuid.UUID(sub)
    except (TypeError, ValueError):
        raise JWTError("Token subject is not a profile id") from None
