"""Resident access tokens. The JWT `sub` claim carries the user id."""

from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

DEFAULT_TOKEN_TTL = timedelta(minutes=30)


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {"sub": str(user_id), "iat": issued_at, "exp": issued_at + (expires_delta or DEFAULT_TOKEN_TTL)}
    return jwt.encode(claims, secret, algorithm=algorithm)


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise ValueError("missing authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise ValueError("authorization scheme must be Bearer")
    return token


def user_id_from_authorization(
    authorization: str | None,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Resolve an `Authorization: Bearer <jwt>` header to a resident id.

    Raises ValueError for a missing header, a foreign scheme, a bad signature,
    an expired token or a `sub` that is not a positive integer.
    """
    token = _bearer_token(authorization)
    try:
        claims = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["exp", "sub"]})
    except ExpiredSignatureError as exc:
        raise ValueError("token expired") from exc
    except InvalidTokenError as exc:
        raise ValueError("invalid token") from exc

    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
    if user_id < 1:
        raise ValueError("token sub must be a positive user id")
    return user_id
