from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ReviewStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"


# 仍占用审稿名额的状态（重复邀请判定）
ACTIVE_REVIEW_STATUSES = frozenset({ReviewStatus.PENDING.value, ReviewStatus.IN_PROGRESS.value})


class Recommendation(str, Enum):
    ACCEPT = "accept"
    MINOR_REVISION = "minor_revision"
    MAJOR_REVISION = "major_revision"
    REJECT = "reject"


def normalize_recommendation(value: str | Recommendation | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, Recommendation):
        return value.value
    v = str(value).strip().lower()
    try:
        return Recommendation(v).value
    except ValueError:
        return None


class InviteReviewerRequest(BaseModel):
    reviewer_id: str = Field(..., min_length=1)
    due_days: Optional[int] = Field(default=None, ge=1, le=120)


class ReviewSubmitRequest(BaseModel):
    """
    审稿报告提交（双通道评论）

    recommendation/rating 在这里保持 Optional，由服务层统一抛 ValidationError，
    这样 API 与服务直调得到一致的错误 kind。
    """

    recommendation: Optional[str] = None
    rating: Optional[int] = None

    # Public (Author-visible)
    author_comments: Optional[str] = Field(default=None, max_length=20000)

    # Confidential (Editor-only)
    confidential_comments: Optional[str] = Field(default=None, max_length=20000)


class ExtendReviewDeadlineRequest(BaseModel):
    due_at: datetime
    reason: Optional[str] = Field(default=None, max_length=2000)
