"""Chapter collection routes: cached listing, direct lookup, bulk upload."""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from constants import CHAPTERS_PATH, UPLOAD_BUDGET
from core.container import container
from core.logging import get_logger
from middleware.auth import require_admin
from middleware.rate_limit import RateLimit
from services.chapters import ChapterService, DataStoreTimeout, parse_filters, parse_pagination

logger = get_logger(__name__)
router = APIRouter(prefix=CHAPTERS_PATH, tags=["chapters"])


def _chapter_service() -> ChapterService:
    return container.chapter_service()


def _timeout_body(message: str, error: Exception) -> dict:
    body = {"success": False, "message": message}
    if container.settings().is_development:
        body["error"] = str(error)
    return body


@router.get("")
async def get_all_chapters(
    response: Response,
    class_name: Optional[str] = Query(default=None, alias="class"),
    unit: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    subject: Optional[str] = Query(default=None),
    is_weak_chapter: Optional[str] = Query(default=None, alias="isWeakChapter"),
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    service: ChapterService = Depends(_chapter_service),
):
    """Paginated, filtered chapter list. Served through the response cache."""
    filters = parse_filters(class_name, unit, status, subject, is_weak_chapter)
    pagination = parse_pagination(page, limit)
    try:
        data = await service.list_chapters(filters, pagination)
        return {"success": True, "data": data}
    except DataStoreTimeout as e:
        logger.error("Get chapters timed out", error=str(e))
        response.status_code = 504
        return _timeout_body("Database operation timed out. Please try again or contact support.", e)


@router.get("/{chapter_id}")
async def get_chapter_by_id(
    chapter_id: str,
    response: Response,
    service: ChapterService = Depends(_chapter_service),
):
    """Single chapter by numeric id. Never cached."""
    try:
        parsed_id = int(chapter_id)
    except ValueError:
        response.status_code = 400
        return {"success": False, "message": "Invalid chapter ID"}

    try:
        chapter = await service.get_chapter(parsed_id)
    except DataStoreTimeout as e:
        logger.error("Get chapter timed out", chapter_id=parsed_id, error=str(e))
        response.status_code = 504
        return _timeout_body("Database operation timed out. Please try again.", e)

    if chapter is None:
        response.status_code = 404
        return {"success": False, "message": "Chapter not found"}
    return {"success": True, "data": chapter.to_dict()}


@router.post("", dependencies=[Depends(RateLimit(UPLOAD_BUDGET)), Depends(require_admin)])
async def upload_chapters(
    response: Response,
    payload: Any = Body(...),
    service: ChapterService = Depends(_chapter_service),
):
    """Bulk upsert chapters from a JSON array (admin only)."""
    try:
        outcome = await service.upload_chapters(payload)
    except DataStoreTimeout as e:
        logger.error("Chapter upload timed out", error=str(e))
        response.status_code = 504
        return _timeout_body(
            "Database operation timed out. Please try again with a smaller file or contact support.", e)

    logger.info("Chapter upload completed", status_code=outcome.status_code,
                successful=outcome.body.get("data", {}).get("successful", 0))
    response.status_code = outcome.status_code
    return outcome.body
