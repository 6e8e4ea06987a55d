"""Modern async database service with SQLModel and SQLAlchemy 2.0."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from sqlmodel import SQLModel, select
from sqlalchemy import and_, func, or_, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from core.config import Settings
from core.logging import get_logger
from models.chapter import Chapter, ChapterFilters, ChapterIn

logger = get_logger(__name__)


@dataclass
class UpsertResult:
    """Rows created and updated by a bulk upsert."""

    created: List[Dict[str, Any]] = field(default_factory=list)
    updated: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def successful(self) -> List[Dict[str, Any]]:
        return self.updated + self.created


def _summary(index: int, chapter: Chapter) -> Dict[str, Any]:
    return {
        "index": index,
        "id": chapter.id,
        "subject": chapter.subject,
        "chapter": chapter.chapter,
        "class": chapter.class_name,
    }


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            engine_options = {"echo": self.settings.database_echo, "future": True}
            if not self.settings.is_sqlite:
                engine_options.update(
                    pool_size=self.settings.database_pool_size,
                    max_overflow=self.settings.database_max_overflow,
                )
            self.engine = create_async_engine(self.settings.database_url, **engine_options)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    # ============================================================================
    # Chapters
    # ============================================================================

    @staticmethod
    def _chapter_conditions(filters: ChapterFilters) -> list:
        conditions = []
        if filters.class_name:
            if filters.class_name.isdigit():
                conditions.append(Chapter.class_name == f"Class {filters.class_name}")
            else:
                conditions.append(Chapter.class_name.icontains(filters.class_name, autoescape=True))
        if filters.unit:
            conditions.append(Chapter.unit.icontains(filters.unit, autoescape=True))
        if filters.status:
            conditions.append(Chapter.status == filters.status)
        if filters.subject:
            conditions.append(Chapter.subject.icontains(filters.subject, autoescape=True))
        if filters.is_weak_chapter is not None:
            conditions.append(Chapter.is_weak_chapter == filters.is_weak_chapter)
        return conditions

    async def find_chapters(self, filters: ChapterFilters, skip: int, limit: int) -> List[Chapter]:
        """Chapters matching ``filters`` ordered by id."""
        async with self.get_session() as session:
            stmt = (
                select(Chapter)
                .where(*self._chapter_conditions(filters))
                .order_by(Chapter.id)
                .offset(skip)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_chapters(self, filters: ChapterFilters) -> int:
        async with self.get_session() as session:
            stmt = select(func.count()).select_from(Chapter).where(*self._chapter_conditions(filters))
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def get_chapter(self, chapter_id: int) -> Optional[Chapter]:
        async with self.get_session() as session:
            return await session.get(Chapter, chapter_id)

    async def bulk_upsert_chapters(self, rows: List[Tuple[int, ChapterIn]]) -> UpsertResult:
        """Insert or update chapters by (subject, chapter, class) in one transaction.

        ``rows`` pairs each chapter with its index in the uploaded payload. New
        chapters get ids after the current maximum.
        """
        result = UpsertResult()
        if not rows:
            return result

        async with self.get_session() as session:
            identities = {row.identity for _, row in rows}
            stmt = select(Chapter).where(or_(*[
                and_(Chapter.subject == subject, Chapter.chapter == chapter,
                     Chapter.class_name == class_name)
                for subject, chapter, class_name in identities
            ]))
            existing = {c.identity: c for c in (await session.execute(stmt)).scalars().all()}

            max_id = (await session.execute(select(func.max(Chapter.id)))).scalar_one_or_none()
            next_id = (max_id or 0) + 1

            touched: List[Tuple[int, Chapter, bool]] = []
            for index, row in rows:
                chapter = existing.get(row.identity)
                if chapter is not None:
                    for name, value in row.column_values().items():
                        setattr(chapter, name, value)
                    touched.append((index, chapter, False))
                else:
                    chapter = Chapter(id=next_id, **row.column_values())
                    next_id += 1
                    session.add(chapter)
                    existing[row.identity] = chapter
                    touched.append((index, chapter, True))

            await session.commit()

        for index, chapter, created in touched:
            (result.created if created else result.updated).append(_summary(index, chapter))

        logger.info("Chapters upserted", created=len(result.created), updated=len(result.updated))
        return result
