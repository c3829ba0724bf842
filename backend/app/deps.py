from typing import AsyncIterator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .utils.auth import user_id_from_authorization


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_current_user_id(authorization: str | None = Header(default=None)) -> int:
    settings = get_settings()
    try:
        return user_id_from_authorization(
            authorization, secret=settings.auth_secret, algorithms=[settings.auth_algorithm]
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
