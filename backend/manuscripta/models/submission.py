from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class SubmissionStatus(str, Enum):
    """
    稿件生命周期状态。

    中文注释:
    - 状态机规则集中在 TRANSITIONS 表里，服务层只查表，不写级联 if/else。
    - 数据库存储为小写字符串；对外接口同时接受大写（normalize_status）。
    """

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REVISION_REQUIRED = "revision_required"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PUBLISHED = "published"

    @classmethod
    def allowed_next(cls, current: str | None) -> set[str]:
        norm = normalize_status(current)
        if norm is None:
            return set()
        return {s.value for s in TRANSITIONS[cls(norm)]}

    @classmethod
    def can_transition(cls, current: str | None, target: str | None) -> bool:
        to_norm = normalize_status(target)
        return to_norm is not None and to_norm in cls.allowed_next(current)

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.SUBMITTED: frozenset({SubmissionStatus.UNDER_REVIEW}),
    SubmissionStatus.UNDER_REVIEW: frozenset(
        {
            SubmissionStatus.REVISION_REQUIRED,
            SubmissionStatus.ACCEPTED,
            SubmissionStatus.REJECTED,
        }
    ),
    # resubmission
    SubmissionStatus.REVISION_REQUIRED: frozenset({SubmissionStatus.UNDER_REVIEW}),
    SubmissionStatus.ACCEPTED: frozenset({SubmissionStatus.PUBLISHED}),
    SubmissionStatus.REJECTED: frozenset(),
    SubmissionStatus.PUBLISHED: frozenset(),
}

# 作者本人可发起的边（其余均为编辑决策）
AUTHOR_EDGES: frozenset[tuple[SubmissionStatus, SubmissionStatus]] = frozenset(
    {(SubmissionStatus.REVISION_REQUIRED, SubmissionStatus.UNDER_REVIEW)}
)

# 可以挂到期刊卷期上的状态
ISSUE_ELIGIBLE_STATUSES = frozenset({SubmissionStatus.ACCEPTED.value, SubmissionStatus.PUBLISHED.value})


def normalize_status(value: str | SubmissionStatus | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, SubmissionStatus):
        return value.value
    v = str(value).strip().lower()
    if not v:
        return None
    try:
        return SubmissionStatus(v).value
    except ValueError:
        return None


class CoAuthor(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    affiliation: Optional[str] = Field(default=None, max_length=500)
    is_corresponding: bool = False
    order: int = Field(default=0, ge=0)


class SubmissionCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=500)
    abstract: str = Field(..., min_length=30, max_length=10000)
    keywords: list[str] = Field(default_factory=list)
    co_authors: list[CoAuthor] = Field(default_factory=list)
    manuscript_files: list[str] = Field(default_factory=list)

    @field_validator("title", "abstract")
    @classmethod
    def _strip(cls, value: str) -> str:
        cleaned = str(value or "").strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, value: list[str]) -> list[str]:
        out: list[str] = []
        for raw in value or []:
            kw = str(raw or "").strip()
            if kw and kw not in out:
                out.append(kw)
        return out


class TransitionRequest(BaseModel):
    target_status: str = Field(..., description="目标状态（大小写均可）")
    comments: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("target_status")
    @classmethod
    def _known_status(cls, value: str) -> str:
        norm = normalize_status(value)
        if norm is None:
            raise ValueError(f"Unknown status: {value}")
        return norm


class ResubmitRequest(BaseModel):
    comments: Optional[str] = Field(default=None, max_length=5000)
    manuscript_files: list[str] = Field(default_factory=list)


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)

