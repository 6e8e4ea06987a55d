"""Chapter records: SQLModel table, upload row model and query filters."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field as PydanticField, NonNegativeInt, model_validator
from sqlmodel import SQLModel, Field, Column, DateTime, JSON
from sqlalchemy import String, UniqueConstraint, func

ChapterStatus = Literal["Completed", "In Progress", "Not Started"]


class Chapter(SQLModel, table=True):
    """Performance metrics for one subject chapter."""

    __tablename__ = "chapters"
    __table_args__ = (
        UniqueConstraint("subject", "chapter", "class", name="uq_chapters_identity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    subject: str = Field(index=True, max_length=255)
    chapter: str = Field(max_length=255)
    class_name: str = Field(sa_column=Column("class", String(100), nullable=False, index=True))
    unit: str = Field(index=True, max_length=255)
    year_wise_question_count: Dict[str, int] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False)
    )
    question_solved: int = Field(default=0)
    status: str = Field(default="Not Started", index=True, max_length=20)
    is_weak_chapter: bool = Field(default=False, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )

    @property
    def total_questions(self) -> int:
        return sum((self.year_wise_question_count or {}).values())

    @property
    def completion_percentage(self) -> int:
        total = self.total_questions
        return round(self.question_solved / total * 100) if total > 0 else 0

    @property
    def class_number(self) -> Optional[int]:
        match = re.search(r"\d+", self.class_name or "")
        return int(match.group(0)) if match else None

    @property
    def identity(self) -> tuple:
        return self.subject, self.chapter, self.class_name

    def to_dict(self) -> Dict[str, Any]:
        """Public JSON shape, including derived fields."""
        return {
            "id": self.id,
            "subject": self.subject,
            "chapter": self.chapter,
            "class": self.class_name,
            "unit": self.unit,
            "yearWiseQuestionCount": self.year_wise_question_count or {},
            "questionSolved": self.question_solved,
            "status": self.status,
            "isWeakChapter": self.is_weak_chapter,
            "totalQuestions": self.total_questions,
            "completionPercentage": self.completion_percentage,
            "classNumber": self.class_number,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ChapterIn(BaseModel):
    """One row of a bulk upload."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    subject: str = PydanticField(min_length=1, max_length=255)
    chapter: str = PydanticField(min_length=1, max_length=255)
    class_name: str = PydanticField(alias="class", min_length=1, max_length=100)
    unit: str = PydanticField(min_length=1, max_length=255)
    year_wise_question_count: Dict[str, NonNegativeInt] = PydanticField(alias="yearWiseQuestionCount")
    question_solved: NonNegativeInt = PydanticField(alias="questionSolved")
    status: ChapterStatus
    is_weak_chapter: bool = PydanticField(alias="isWeakChapter")

    @model_validator(mode="after")
    def check_solved_within_total(self) -> "ChapterIn":
        if self.question_solved > sum(self.year_wise_question_count.values()):
            raise ValueError("questionSolved cannot exceed total questions available")
        return self

    @property
    def identity(self) -> tuple:
        return self.subject, self.chapter, self.class_name

    def column_values(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "chapter": self.chapter,
            "class_name": self.class_name,
            "unit": self.unit,
            "year_wise_question_count": dict(self.year_wise_question_count),
            "question_solved": self.question_solved,
            "status": self.status,
            "is_weak_chapter": self.is_weak_chapter,
        }


@dataclass(frozen=True)
class ChapterFilters:
    """Filters accepted by the chapter list endpoint."""

    class_name: Optional[str] = None
    unit: Optional[str] = None
    status: Optional[str] = None
    subject: Optional[str] = None
    is_weak_chapter: Optional[bool] = None
