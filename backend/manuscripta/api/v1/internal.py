from fastapi import APIRouter, Depends, Query

from manuscripta.api.v1.deps import get_maintenance_service, get_review_service
from manuscripta.core.security import require_admin_key
from manuscripta.services.maintenance_service import MaintenanceService
from manuscripta.services.review_service import ReviewService

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.post("/cron/review-reminders")
async def review_reminders(
    _admin: None = Depends(require_admin_key),
    service: ReviewService = Depends(get_review_service),
):
    """
    触发审稿催办（内部接口，由外部定时器调用）
    """
    result = service.send_reminders()
    return {"success": True, **result}


@router.post("/maintenance/repair-stranded-under-review")
async def repair_stranded_under_review(
    dry_run: bool = Query(True),
    _admin: None = Depends(require_admin_key),
    service: MaintenanceService = Depends(get_maintenance_service),
):
    report = service.repair_stranded_under_review(dry_run=dry_run)
    return {"success": True, **report.as_dict()}
