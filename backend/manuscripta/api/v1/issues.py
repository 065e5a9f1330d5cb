from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from manuscripta.api.v1.deps import get_issue_service
from manuscripta.core.roles import get_current_actor
from manuscripta.models.issue import AddArticleRequest, IssueCreate
from manuscripta.models.user import Actor
from manuscripta.services.issue_service import IssueService

router = APIRouter(prefix="/issues", tags=["Issues"])


@router.get("")
async def list_issues(
    status: Optional[str] = Query(None),
    service: IssueService = Depends(get_issue_service),
):
    return {"success": True, "data": service.list_issues(status=status)}


@router.get("/current")
async def current_issue(service: IssueService = Depends(get_issue_service)):
    issue = service.get_current()
    if issue is None:
        raise HTTPException(status_code=404, detail="No current issue")
    return {"success": True, "data": issue}


@router.post("", status_code=201)
async def create_issue(
    payload: IssueCreate,
    actor: Actor = Depends(get_current_actor),
    service: IssueService = Depends(get_issue_service),
):
    return {"success": True, "data": service.create_issue(payload, actor)}


@router.get("/{issue_id}")
async def get_issue(issue_id: str, service: IssueService = Depends(get_issue_service)):
    return {"success": True, "data": service.get_issue(issue_id)}


@router.post("/{issue_id}/articles", status_code=201)
async def add_article(
    issue_id: str,
    payload: AddArticleRequest,
    actor: Actor = Depends(get_current_actor),
    service: IssueService = Depends(get_issue_service),
):
    return {"success": True, "data": service.add_article(issue_id, payload, actor)}


@router.post("/{issue_id}/publish")
async def publish_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueService = Depends(get_issue_service),
):
    return {"success": True, "data": service.publish_issue(issue_id, actor)}


@router.post("/{issue_id}/archive")
async def archive_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueService = Depends(get_issue_service),
):
    return {"success": True, "data": service.archive_issue(issue_id, actor)}


@router.post("/{issue_id}/current")
async def set_current_issue(
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueService = Depends(get_issue_service),
):
    return {"success": True, "data": service.set_current(issue_id, actor)}
