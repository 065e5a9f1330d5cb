from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from manuscripta.api.v1.deps import get_admin_service
from manuscripta.core.roles import get_current_actor, require_any_role
from manuscripta.models.admin import AdminEntity, AdminListQuery, ComplaintUpdate
from manuscripta.models.user import Actor, UserUpdateRequest
from manuscripta.services.admin_service import AdminService

admin_only = require_any_role(["admin"])

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(admin_only)])


def _list_query(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Optional[str] = Query(None, max_length=64),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    status: Optional[str] = Query(None, max_length=64),
    role: Optional[str] = Query(None, max_length=32),
    q: Optional[str] = Query(None, max_length=100),
) -> AdminListQuery:
    return AdminListQuery(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        status=status,
        role=role,
        q=q,
    )


@router.get("/stats")
async def admin_stats(
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.stats(actor)}


@router.get("/submission-stats")
async def submission_stats(
    period: Literal["monthly", "yearly"] = Query("monthly"),
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.submission_stats(actor, period=period)}


@router.get("/financial-stats")
async def financial_stats(
    period: Literal["monthly", "yearly"] = Query("monthly"),
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.financial_stats(actor, period=period)}


@router.get("/reports/{entity}")
async def export_report(
    entity: AdminEntity,
    format: Literal["csv", "xlsx"] = Query("csv"),
    query: AdminListQuery = Depends(_list_query),
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    """
    报表导出（CSV / XLSX）
    """
    filename, media_type, content = service.export_report(entity, query, actor, fmt=format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.update_user(user_id, payload, actor)}


@router.patch("/complaints/{complaint_id}")
async def update_complaint(
    complaint_id: str,
    payload: ComplaintUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.update_complaint(complaint_id, payload, actor)}


@router.get("/{entity}")
async def list_entities(
    entity: AdminEntity,
    query: AdminListQuery = Depends(_list_query),
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return service.list_entities(entity, query, actor)


@router.get("/{entity}/{entity_id}")
async def get_entity(
    entity: AdminEntity,
    entity_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.get_entity(entity, entity_id, actor)}
