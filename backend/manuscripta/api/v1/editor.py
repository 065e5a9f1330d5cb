from typing import Optional

from fastapi import APIRouter, Depends, Query

from manuscripta.api.v1.deps import get_lifecycle_service, get_review_service
from manuscripta.core.roles import require_capability
from manuscripta.models.review import ExtendReviewDeadlineRequest
from manuscripta.models.user import Actor
from manuscripta.services.lifecycle_service import SubmissionLifecycleService
from manuscripta.services.review_service import ReviewService

router = APIRouter(prefix="/editor", tags=["Editor"])


@router.get("/submissions")
async def list_submissions(
    status: Optional[str] = Query(None, description="按状态过滤；all 或留空表示全部"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_capability("submission:view_all")),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    result = service.list_for_editor(actor, status=status, page=page, limit=limit)
    return {"success": True, **result}


@router.get("/reviews/overdue")
async def overdue_reviews(
    actor: Actor = Depends(require_capability("review:invite")),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.list_overdue()}


@router.put("/reviews/{review_id}/deadline")
async def extend_review_deadline(
    review_id: str,
    payload: ExtendReviewDeadlineRequest,
    actor: Actor = Depends(require_capability("review:invite")),
    service: ReviewService = Depends(get_review_service),
):
    review = service.extend_deadline(review_id, payload.due_at, actor, reason=payload.reason)
    return {"success": True, "data": review}


@router.delete("/submissions/{submission_id}/reviews/{review_id}")
async def remove_reviewer(
    submission_id: str,
    review_id: str,
    reason: Optional[str] = Query(None, max_length=2000),
    actor: Actor = Depends(require_capability("review:invite")),
    service: ReviewService = Depends(get_review_service),
):
    """
    撤回审稿邀请；已提交的报告不能删除（409）
    """
    removed = service.remove_reviewer(submission_id, review_id, actor, reason=reason)
    return {"success": True, "data": removed}
