from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from manuscripta.api.v1.deps import get_review_service
from manuscripta.core.roles import get_current_actor
from manuscripta.models.review import InviteReviewerRequest, ReviewSubmitRequest
from manuscripta.models.user import Actor
from manuscripta.services.review_service import ReviewService

router = APIRouter(tags=["Reviews"])


@router.post("/submissions/{submission_id}/reviewers", status_code=201)
async def invite_reviewer(
    submission_id: str,
    payload: InviteReviewerRequest,
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    review = service.invite_reviewer(submission_id, payload.reviewer_id, actor, due_days=payload.due_days)
    return {"success": True, "data": review}


@router.get("/submissions/{submission_id}/decision-context")
async def decision_context(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    """
    编辑决策参考：已完成报告 + 推荐分布 + 平均分（不会改变稿件状态）
    """
    return {"success": True, "data": service.aggregate_for_decision(submission_id, actor)}


@router.get("/reviews/mine")
async def my_reviews(
    status: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.list_for_reviewer(actor, status=status)}


@router.get("/reviews/stats")
async def my_review_stats(
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.reviewer_stats(actor.id)}


@router.post("/reviews/{review_id}/accept")
async def accept_invitation(
    review_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.accept_invitation(review_id, actor)}


@router.post("/reviews/{review_id}/decline")
async def decline_invitation(
    review_id: str,
    reason: Optional[str] = Body(None, embed=True, max_length=2000),
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.decline_invitation(review_id, actor, reason=reason)}


@router.post("/reviews/{review_id}/submit")
async def submit_review(
    review_id: str,
    payload: ReviewSubmitRequest,
    actor: Actor = Depends(get_current_actor),
    service: ReviewService = Depends(get_review_service),
):
    return {"success": True, "data": service.submit_review(review_id, actor, payload)}
