from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ComplaintStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


AdminEntity = Literal["users", "submissions", "payments", "complaints"]


class AdminListQuery(BaseModel):
    """
    Admin 列表查询参数（分页 + 排序 + 过滤）。
    """

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Optional[str] = Field(default=None, max_length=64)
    sort_order: Literal["asc", "desc"] = "desc"
    status: Optional[str] = Field(default=None, max_length=64)
    role: Optional[str] = Field(default=None, max_length=32)
    q: Optional[str] = Field(default=None, max_length=100)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AdminListResponse(BaseModel):
    success: bool = True
    data: list[dict[str, Any]]
    pagination: Pagination


class ComplaintCreate(BaseModel):
    subject: str = Field(..., min_length=3, max_length=300)
    description: str = Field(..., min_length=10, max_length=10000)
    submission_id: Optional[str] = None


class ComplaintUpdate(BaseModel):
    status: Optional[ComplaintStatus] = None
    resolution: Optional[str] = Field(default=None, max_length=10000)
