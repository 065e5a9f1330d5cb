from fastapi import APIRouter, Depends

from manuscripta.api.v1.deps import get_admin_service
from manuscripta.core.roles import get_current_actor
from manuscripta.models.admin import ComplaintCreate
from manuscripta.models.user import Actor
from manuscripta.services.admin_service import AdminService

router = APIRouter(tags=["Complaints"])


@router.post("/complaints", status_code=201)
async def file_complaint(
    payload: ComplaintCreate,
    actor: Actor = Depends(get_current_actor),
    service: AdminService = Depends(get_admin_service),
):
    return {"success": True, "data": service.create_complaint(payload, actor)}
