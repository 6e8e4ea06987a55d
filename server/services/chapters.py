"""Chapter listing, lookup and bulk upload on top of the data store."""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Optional, Tuple, TypeVar

from pydantic import ValidationError

from constants import CHAPTERS_CACHE_PATTERN
from core.config import Settings
from core.database import Database
from core.logging import get_logger
from models.chapter import Chapter, ChapterFilters, ChapterIn
from services.response_cache import ResponseCache

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 10


class DataStoreTimeout(Exception):
    """A data store call exceeded its time bound."""


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class UploadOutcome:
    """HTTP status and body for a bulk upload."""

    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _positive_int(value: Optional[str], default: int) -> int:
    try:
        parsed = int(value) if value is not None else 0
    except (TypeError, ValueError):
        parsed = 0
    return parsed or default


def parse_pagination(page: Optional[str], limit: Optional[str]) -> Pagination:
    """Page defaults to 1, limit to 10; limit is clamped to 1..10."""
    return Pagination(
        page=max(1, _positive_int(page, 1)),
        limit=min(MAX_PAGE_SIZE, max(1, _positive_int(limit, DEFAULT_PAGE_SIZE))),
    )


def parse_filters(class_name: Optional[str] = None, unit: Optional[str] = None,
                  status: Optional[str] = None, subject: Optional[str] = None,
                  is_weak_chapter: Optional[str] = None) -> ChapterFilters:
    return ChapterFilters(
        class_name=class_name.strip() if class_name else None,
        unit=unit.strip() if unit else None,
        status=status or None,
        subject=subject or None,
        is_weak_chapter=None if is_weak_chapter is None else is_weak_chapter == "true",
    )


def _validation_messages(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


class ChapterService:
    """Read and ingest chapters; invalidates cached list pages after writes."""

    def __init__(self, database: Database, cache: ResponseCache, settings: Settings):
        self.database = database
        self.cache = cache
        self.settings = settings

    async def _bounded(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.settings.database_query_timeout)
        except asyncio.TimeoutError as e:
            raise DataStoreTimeout(
                f"Operation timed out after {self.settings.database_query_timeout}s") from e

    async def list_chapters(self, filters: ChapterFilters, pagination: Pagination) -> Dict[str, Any]:
        chapters, total = await asyncio.gather(
            self._bounded(self.database.find_chapters(filters, pagination.skip, pagination.limit)),
            self._bounded(self.database.count_chapters(filters)),
        )
        total_pages = math.ceil(total / pagination.limit)
        return {
            "chapters": [c.to_dict() for c in chapters],
            "pagination": {
                "currentPage": pagination.page,
                "totalPages": total_pages,
                "totalItems": total,
                "itemsPerPage": pagination.limit,
                "hasNextPage": pagination.page < total_pages,
                "hasPrevPage": pagination.page > 1,
            },
        }

    async def get_chapter(self, chapter_id: int) -> Optional[Chapter]:
        return await self._bounded(self.database.get_chapter(chapter_id))

    async def upload_chapters(self, payload: Any) -> UploadOutcome:
        """Validate rows, upsert the valid ones and invalidate cached lists."""
        if not isinstance(payload, list):
            return UploadOutcome(400, {"success": False,
                                       "message": "JSON must contain an array of chapters"})

        valid: List[Tuple[int, ChapterIn]] = []
        failed: List[Dict[str, Any]] = []
        for index, row in enumerate(payload):
            try:
                valid.append((index, ChapterIn.model_validate(row)))
            except ValidationError as e:
                failed.append({"index": index, "data": row, "errors": _validation_messages(e)})

        logger.info("Chapter upload validated", total=len(payload), valid=len(valid),
                    failed=len(failed))

        if not valid:
            return UploadOutcome(400, {
                "success": False,
                "message": "No valid chapters found",
                "data": {
                    "totalProcessed": len(payload),
                    "successful": 0,
                    "failed": len(failed),
                    "failedChapters": failed,
                },
            })

        result = await self._bounded(self.database.bulk_upsert_chapters(valid))

        if result.successful:
            await self.cache.invalidate(CHAPTERS_CACHE_PATTERN)

        return UploadOutcome(207 if failed else 201, {
            "success": not failed,
            "message": f"{len(result.successful)} chapters processed successfully, "
                       f"{len(failed)} failed",
            "data": {
                "totalProcessed": len(payload),
                "successful": len(result.successful),
                "failed": len(failed),
                "created": len(result.created),
                "updated": len(result.updated),
                "createdChapters": result.created,
                "updatedChapters": result.updated,
                "failedChapters": failed,
            },
        })
