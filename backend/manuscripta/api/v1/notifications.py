from fastapi import APIRouter, Depends, HTTPException, Query

from manuscripta.api.v1.deps import get_notification_service
from manuscripta.core.roles import get_current_actor
from manuscripta.models.user import Actor
from manuscripta.services.notification_service import NotificationService

router = APIRouter(tags=["Notifications"])


@router.get("/notifications")
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service),
):
    """
    获取当前用户的通知列表
    """
    return {"success": True, "data": service.list_for_user(user_id=actor.id, limit=limit)}


@router.patch("/notifications/{id}/read")
async def mark_notification_read(
    id: str,
    actor: Actor = Depends(get_current_actor),
    service: NotificationService = Depends(get_notification_service),
):
    """
    将通知标记为已读（仅允许更新自己的记录）
    """
    updated = service.mark_read(user_id=actor.id, notification_id=id)
    if updated is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "data": updated}
