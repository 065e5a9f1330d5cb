from fastapi import APIRouter, Depends, Query

from manuscripta.api.v1.deps import get_lifecycle_service, get_review_service
from manuscripta.core.roles import get_current_actor
from manuscripta.models.submission import ResubmitRequest, SubmissionCreate, TransitionRequest, WithdrawRequest
from manuscripta.models.user import Actor
from manuscripta.services.lifecycle_service import SubmissionLifecycleService
from manuscripta.services.review_service import ReviewService

router = APIRouter(prefix="/submissions", tags=["Submissions"])


@router.post("", status_code=201)
async def create_submission(
    payload: SubmissionCreate,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    """
    作者投稿（初始状态 submitted）
    """
    return {"success": True, "data": service.create_submission(actor, payload)}


@router.get("")
async def list_my_submissions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    result = service.list_for_author(actor, page=page, limit=limit)
    return {"success": True, **result}


@router.get("/{submission_id}")
async def get_submission(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "data": service.get_submission_for(submission_id, actor)}


@router.post("/{submission_id}/transition")
async def transition_submission(
    submission_id: str,
    payload: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    """
    编辑决策 / 状态流转（状态表校验 + 条件更新）
    """
    updated = service.transition(submission_id, payload.target_status, actor, payload.comments)
    return {"success": True, "data": updated}


@router.post("/{submission_id}/resubmit")
async def resubmit_submission(
    submission_id: str,
    payload: ResubmitRequest,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    updated = service.resubmit(
        submission_id,
        actor,
        comments=payload.comments,
        manuscript_files=payload.manuscript_files,
    )
    return {"success": True, "data": updated}


@router.post("/{submission_id}/withdraw")
async def withdraw_submission(
    submission_id: str,
    payload: WithdrawRequest,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "data": service.withdraw(submission_id, actor, reason=payload.reason)}


@router.post("/{submission_id}/proof/approve")
async def approve_proof(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "data": service.approve_proof(submission_id, actor)}


@router.get("/{submission_id}/history")
async def get_history(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    service: SubmissionLifecycleService = Depends(get_lifecycle_service),
):
    return {"success": True, "data": service.get_history(submission_id, actor)}


@router.get("/{submission_id}/reviews")
async def get_author_reviews(
    submission_id: str,
    actor: Actor = Depends(get_current_actor),
    reviews: ReviewService = Depends(get_review_service),
):
    """
    作者视角的审稿意见（不含机密意见与审稿人身份）
    """
    return {"success": True, "data": reviews.reviews_for_author(submission_id, actor)}
