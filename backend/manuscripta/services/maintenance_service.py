from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from manuscripta.lib.api_client import extract_rows, supabase_admin
from manuscripta.models.review import ReviewStatus
from manuscripta.models.submission import SubmissionStatus

logger = logging.getLogger("manuscripta.maintenance")


@dataclass
class RepairReport:
    scanned: int = 0
    reset: list[str] = field(default_factory=list)
    left_alone: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    dry_run: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "reset": list(self.reset),
            "left_alone": list(self.left_alone),
            "conflicts": list(self.conflicts),
            "dry_run": self.dry_run,
        }


class MaintenanceService:
    """
    数据修复：处理旧版本“审稿完成自动推进状态”遗留的数据。

    中文注释:
    - under_review 但没有任何有效（非 declined）审稿邀请的稿件，退回 submitted 并写历史；
    - 有有效审稿的稿件只报告，不改动；
    - 修复是一次性运维动作，不经过状态表（under_review -> submitted 不是业务边）。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    def repair_stranded_under_review(self, *, dry_run: bool = False) -> RepairReport:
        report = RepairReport(dry_run=dry_run)
        submissions = extract_rows(
            self.client.table("submissions")
            .select("id,status,updated_at")
            .eq("status", SubmissionStatus.UNDER_REVIEW.value)
            .execute()
        )
        for sub in submissions:
            report.scanned += 1
            submission_id = str(sub["id"])
            active = extract_rows(
                self.client.table("reviews")
                .select("id")
                .eq("submission_id", submission_id)
                .neq("status", ReviewStatus.DECLINED.value)
                .limit(1)
                .execute()
            )
            if active:
                report.left_alone.append(submission_id)
                continue
            if dry_run:
                report.reset.append(submission_id)
                continue

            now = datetime.now(timezone.utc).isoformat()
            rows = extract_rows(
                self.client.table("submissions")
                .update({"status": SubmissionStatus.SUBMITTED.value, "updated_at": now})
                .eq("id", submission_id)
                .eq("status", SubmissionStatus.UNDER_REVIEW.value)
                .execute()
            )
            if not rows:
                report.conflicts.append(submission_id)
                continue
            report.reset.append(submission_id)
            self.client.table("submission_timeline").insert(
                {
                    "submission_id": submission_id,
                    "event": "maintenance_reset",
                    "from_status": SubmissionStatus.UNDER_REVIEW.value,
                    "to_status": SubmissionStatus.SUBMITTED.value,
                    "performed_by": None,
                    "comments": "Reset: under review without any active reviewer invitation",
                    "created_at": now,
                }
            ).execute()

        logger.info(
            "[Maintenance] stranded under_review: scanned=%s reset=%s left=%s conflicts=%s dry_run=%s",
            report.scanned,
            len(report.reset),
            len(report.left_alone),
            len(report.conflicts),
            dry_run,
        )
        return report
