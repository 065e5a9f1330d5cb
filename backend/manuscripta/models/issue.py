from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class IssueStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class IssueCreate(BaseModel):
    volume: int = Field(..., ge=1)
    number: int = Field(..., ge=1)
    year: int = Field(..., ge=1900, le=2200)
    title: Optional[str] = Field(default=None, max_length=300)


class AddArticleRequest(BaseModel):
    submission_id: str = Field(..., min_length=1)
    page_start: int = Field(..., ge=1)
    page_end: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _validate_range(self) -> "AddArticleRequest":
        if self.page_end < self.page_start:
            raise ValueError("page_end must be >= page_start")
        return self


class IssueArticle(BaseModel):
    issue_id: str
    submission_id: str
    position: int
    page_start: int
    page_end: int
    title: Optional[str] = None


class Issue(BaseModel):
    id: str
    volume: int
    number: int
    year: int
    title: Optional[str] = None
    status: IssueStatus = IssueStatus.DRAFT
    is_current: bool = False
    published_at: Optional[datetime] = None
    articles: list[IssueArticle] = Field(default_factory=list)
