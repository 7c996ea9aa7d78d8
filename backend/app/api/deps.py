"""
API Dependencies — DB session and repositories.

Authentication is handled upstream of this service; every endpoint here is
open to callers that can reach it.
"""

import logging
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import async_session
from app.services.bill_repository import BillRepository

logger = logging.getLogger(__name__)


# ── Database session ─────────────────────────────────────────────────────────

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Repositories ─────────────────────────────────────────────────────────────

async def get_bill_repository(db: AsyncSession = Depends(get_db)) -> BillRepository:
    return BillRepository(db)
