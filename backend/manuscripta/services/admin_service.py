from __future__ import annotations

import csv
import io
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from openpyxl import Workbook

from manuscripta.core.errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from manuscripta.core.role_matrix import can_perform_action
from manuscripta.lib.api_client import extract_count, extract_rows, supabase_admin
from manuscripta.models.admin import AdminListQuery, ComplaintCreate, ComplaintStatus, ComplaintUpdate
from manuscripta.models.payment import PaymentStatus
from manuscripta.models.submission import SubmissionStatus
from manuscripta.models.user import Actor, UserRole, UserUpdateRequest

logger = logging.getLogger("manuscripta.admin")

ENTITY_TABLES: dict[str, str] = {
    "users": "user_profiles",
    "submissions": "submissions",
    "payments": "payments",
    "complaints": "complaints",
}

# 排序白名单：只允许这些列出现在 order() 里
SORT_COLUMNS: dict[str, set[str]] = {
    "users": {"created_at", "email", "full_name", "account_status"},
    "submissions": {"created_at", "updated_at", "title", "status"},
    "payments": {"created_at", "paid_at", "amount", "status"},
    "complaints": {"created_at", "updated_at", "status"},
}

SEARCH_COLUMN: dict[str, str] = {
    "users": "email",
    "submissions": "title",
    "payments": "invoice_number",
    "complaints": "subject",
}

STATUS_COLUMN: dict[str, str] = {
    "users": "account_status",
    "submissions": "status",
    "payments": "status",
    "complaints": "status",
}

EXPORT_COLUMNS: dict[str, list[str]] = {
    "users": ["id", "email", "full_name", "roles", "account_status", "created_at"],
    "submissions": ["id", "title", "status", "author_id", "doi", "created_at", "updated_at"],
    "payments": [
        "id",
        "invoice_number",
        "submission_id",
        "author_id",
        "amount",
        "currency",
        "status",
        "transaction_id",
        "paid_at",
        "created_at",
    ],
    "complaints": ["id", "subject", "status", "reporter_id", "submission_id", "resolution", "created_at"],
}

EXPORT_ROW_LIMIT = 5000

PENDING_SUBMISSIONS_CRITICAL = 50
PENDING_PAYMENTS_CRITICAL = 25
PENDING_SUBMISSIONS_WARNING = 20
PENDING_PAYMENTS_WARNING = 10


def system_health(pending_submissions: int, pending_payments: int) -> str:
    if pending_submissions > PENDING_SUBMISSIONS_CRITICAL or pending_payments > PENDING_PAYMENTS_CRITICAL:
        return "critical"
    if pending_submissions > PENDING_SUBMISSIONS_WARNING or pending_payments > PENDING_PAYMENTS_WARNING:
        return "warning"
    return "healthy"


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _cell(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    if isinstance(value, dict):
        return str(value)
    return value


class AdminService:
    """
    管理端只读报表 + 用户/投诉的有限写操作。

    中文注释:
    - 这里不做稿件状态写入，状态流转只能走 lifecycle；
    - 列表统一分页（limit <= 100）与排序白名单，避免任意列排序。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    def _require_admin(self, actor: Actor) -> None:
        if not can_perform_action(action="admin:manage", roles=actor.roles):
            raise AuthorizationError("Admin privileges required")

    def _count(self, table: str, **filters: Any) -> int:
        query = self.client.table(table).select("id", count="exact")
        for column, value in filters.items():
            query = query.eq(column, value)
        return extract_count(query.execute())

    def _count_role(self, role: str) -> int:
        return extract_count(
            self.client.table("user_profiles").select("id", count="exact").contains("roles", [role]).execute()
        )

    # === dashboards ===

    def stats(self, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor)
        pending_submissions = self._count("submissions", status=SubmissionStatus.SUBMITTED.value)
        pending_payments = self._count("payments", status=PaymentStatus.PENDING.value)
        paid = extract_rows(
            self.client.table("payments").select("amount").eq("status", PaymentStatus.PAID.value).execute()
        )
        return {
            "total_users": self._count("user_profiles"),
            "total_authors": self._count_role(UserRole.AUTHOR.value),
            "total_editors": self._count_role(UserRole.EDITOR.value),
            "total_reviewers": self._count_role(UserRole.REVIEWER.value),
            "total_submissions": self._count("submissions"),
            "pending_submissions": pending_submissions,
            "published_articles": self._count("submissions", status=SubmissionStatus.PUBLISHED.value),
            "total_revenue": round(sum(float(p.get("amount") or 0) for p in paid), 2),
            "pending_payments": pending_payments,
            "system_health": system_health(pending_submissions, pending_payments),
        }

    def submission_stats(self, actor: Actor, *, period: str = "monthly", now: Optional[datetime] = None) -> dict[str, Any]:
        self._require_admin(actor)
        period = "yearly" if str(period or "").lower() == "yearly" else "monthly"
        now = now or datetime.now(timezone.utc)
        start = datetime(now.year, 1, 1, tzinfo=timezone.utc) if period == "yearly" else datetime(
            now.year, now.month, 1, tzinfo=timezone.utc
        )
        rows = extract_rows(
            self.client.table("submissions").select("id,status,created_at").gte("created_at", start.isoformat()).execute()
        )
        total = len(rows)
        accepted = sum(
            1
            for r in rows
            if r.get("status") in {SubmissionStatus.ACCEPTED.value, SubmissionStatus.PUBLISHED.value}
        )
        rejected = sum(1 for r in rows if r.get("status") == SubmissionStatus.REJECTED.value)
        return {
            "period": period,
            "total_submissions": total,
            "accepted_submissions": accepted,
            "rejected_submissions": rejected,
            "pending_submissions": total - accepted - rejected,
            "acceptance_rate": round(accepted / total * 100) if total else 0,
        }

    def financial_stats(self, actor: Actor, *, period: str = "monthly", now: Optional[datetime] = None) -> dict[str, Any]:
        """
        按月（12 桶）或按年（5 桶）汇总支付金额，按状态拆分。
        """
        self._require_admin(actor)
        period = "yearly" if str(period or "").lower() == "yearly" else "monthly"
        now = now or datetime.now(timezone.utc)

        if period == "yearly":
            keys = [f"{now.year - offset}" for offset in range(4, -1, -1)]
            start = datetime(now.year - 4, 1, 1, tzinfo=timezone.utc)
        else:
            keys = []
            for offset in range(11, -1, -1):
                month_index = now.year * 12 + (now.month - 1) - offset
                keys.append(f"{month_index // 12}-{month_index % 12 + 1:02d}")
            first = now.year * 12 + (now.month - 1) - 11
            start = datetime(first // 12, first % 12 + 1, 1, tzinfo=timezone.utc)

        rows = extract_rows(
            self.client.table("payments")
            .select("amount,currency,status,created_at")
            .gte("created_at", start.isoformat())
            .execute()
        )
        statuses = [s.value for s in PaymentStatus]
        buckets = {k: {s: 0.0 for s in statuses} for k in keys}
        totals = {s: 0.0 for s in statuses}
        by_currency: dict[str, float] = {}
        for p in rows:
            status = str(p.get("status") or "")
            if status not in totals:
                continue
            amount = float(p.get("amount") or 0)
            totals[status] += amount
            if status == PaymentStatus.PAID.value:
                currency = str(p.get("currency") or "")
                by_currency[currency] = by_currency.get(currency, 0.0) + amount
            created = _parse_dt(p.get("created_at"))
            if created is None:
                continue
            key = f"{created.year}" if period == "yearly" else f"{created.year}-{created.month:02d}"
            if key in buckets:
                buckets[key][status] += amount

        return {
            "period": period,
            "range": {"from": start.isoformat(), "to": now.isoformat()},
            "totals": {
                "revenue": round(totals[PaymentStatus.PAID.value], 2),
                "pending": round(totals[PaymentStatus.PENDING.value], 2),
                "refunded": round(totals[PaymentStatus.REFUNDED.value], 2),
                "failed": round(totals[PaymentStatus.FAILED.value], 2),
                "transactions": len(rows),
            },
            "revenue_by_currency": {k: round(v, 2) for k, v in by_currency.items()},
            "trend": [{"label": k, **{s: round(v, 2) for s, v in buckets[k].items()}} for k in keys],
        }

    # === entity lists ===

    def _table_for(self, entity: str) -> str:
        table = ENTITY_TABLES.get(entity)
        if table is None:
            raise ValidationError(f"Unknown entity: {entity}")
        return table

    def _filtered(self, entity: str, query: AdminListQuery, *, count: bool) -> Any:
        table = self._table_for(entity)
        q = self.client.table(table).select("*", count="exact") if count else self.client.table(table).select("*")
        if query.status:
            q = q.eq(STATUS_COLUMN[entity], query.status.strip().lower())
        if query.role and entity == "users":
            q = q.contains("roles", [query.role.strip().lower()])
        if query.q:
            term = query.q.strip().replace("%", "").replace(",", " ")
            if term:
                q = q.ilike(SEARCH_COLUMN[entity], f"%{term}%")
        sort_by = query.sort_by or "created_at"
        if sort_by not in SORT_COLUMNS[entity]:
            raise ValidationError(
                f"Cannot sort {entity} by {sort_by}",
                context={"allowed": sorted(SORT_COLUMNS[entity])},
            )
        return q.order(sort_by, desc=query.sort_order == "desc")

    def list_entities(self, entity: str, query: AdminListQuery, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor)
        offset = (query.page - 1) * query.limit
        resp = self._filtered(entity, query, count=True).range(offset, offset + query.limit - 1).execute()
        total = extract_count(resp)
        return {
            "success": True,
            "data": extract_rows(resp),
            "pagination": {
                "page": query.page,
                "limit": query.limit,
                "total": total,
                "total_pages": math.ceil(total / query.limit) if total else 0,
            },
        }

    def get_entity(self, entity: str, entity_id: str, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor)
        rows = extract_rows(self.client.table(self._table_for(entity)).select("*").eq("id", entity_id).limit(1).execute())
        if not rows:
            raise NotFoundError(f"{entity[:-1].capitalize()} not found", context={"id": entity_id})
        record = dict(rows[0])
        if entity == "submissions":
            record["history"] = extract_rows(
                self.client.table("submission_timeline")
                .select("*")
                .eq("submission_id", entity_id)
                .order("created_at", desc=False)
                .execute()
            )
            record["payments"] = extract_rows(
                self.client.table("payments").select("*").eq("submission_id", entity_id).execute()
            )
        return record

    # === writes ===

    def update_user(self, user_id: str, payload: UserUpdateRequest, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor)
        updates = payload.model_dump(exclude_none=True, mode="json")
        if not updates:
            raise ValidationError("Nothing to update")
        if user_id == actor.id:
            if "roles" in updates and UserRole.ADMIN.value not in updates["roles"]:
                raise ValidationError("Admins cannot remove their own admin role")
            if updates.get("account_status") not in (None, "active"):
                raise ValidationError("Admins cannot deactivate their own account")
        updates["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = extract_rows(self.client.table("user_profiles").update(updates).eq("id", user_id).execute())
        if not rows:
            raise NotFoundError("User not found", context={"id": user_id})
        logger.info("[Admin] user updated: user=%s by=%s fields=%s", user_id, actor.id, sorted(updates))
        return rows[0]

    def create_complaint(self, payload: ComplaintCreate, actor: Actor) -> dict[str, Any]:
        if not actor.roles:
            raise AuthorizationError("Sign in to file a complaint")
        now = datetime.now(timezone.utc).isoformat()
        rows = extract_rows(
            self.client.table("complaints")
            .insert(
                {
                    "reporter_id": actor.id,
                    "submission_id": payload.submission_id,
                    "subject": payload.subject,
                    "description": payload.description,
                    "status": ComplaintStatus.OPEN.value,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            .execute()
        )
        if not rows:
            raise InvalidStateError("Failed to file complaint", status_code=500)
        return rows[0]

    def update_complaint(self, complaint_id: str, payload: ComplaintUpdate, actor: Actor) -> dict[str, Any]:
        self._require_admin(actor)
        updates = payload.model_dump(exclude_none=True, mode="json")
        if not updates:
            raise ValidationError("Nothing to update")
        closing = updates.get("status") in {ComplaintStatus.RESOLVED.value, ComplaintStatus.DISMISSED.value}
        if closing and not (updates.get("resolution") or "").strip():
            raise ValidationError("A resolution note is required to close a complaint")
        now = datetime.now(timezone.utc).isoformat()
        updates["updated_at"] = now
        if closing:
            updates["resolved_at"] = now
            updates["resolved_by"] = actor.id
        rows = extract_rows(self.client.table("complaints").update(updates).eq("id", complaint_id).execute())
        if not rows:
            raise NotFoundError("Complaint not found", context={"id": complaint_id})
        return rows[0]

    # === reports ===

    def export_report(
        self,
        entity: str,
        query: AdminListQuery,
        actor: Actor,
        *,
        fmt: str = "csv",
    ) -> tuple[str, str, bytes]:
        """
        导出报表，返回 (filename, media_type, content)。

        中文注释: 单次最多导出 EXPORT_ROW_LIMIT 行；格式支持 csv / xlsx。
        """
        self._require_admin(actor)
        rows = extract_rows(self._filtered(entity, query, count=False).limit(EXPORT_ROW_LIMIT).execute())
        headers = EXPORT_COLUMNS[entity]
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")

        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf)
            writer.writerow(headers)
            for r in rows:
                writer.writerow([_cell(r.get(h)) for h in headers])
            return f"{entity}_{stamp}.csv", "text/csv", buf.getvalue().encode("utf-8")

        if fmt == "xlsx":
            wb = Workbook()
            ws = wb.active
            ws.title = entity.capitalize()
            ws.append(headers)
            for r in rows:
                ws.append([_cell(r.get(h)) for h in headers])
            out = io.BytesIO()
            wb.save(out)
            return (
                f"{entity}_{stamp}.xlsx",
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                out.getvalue(),
            )

        raise ValidationError(f"Unsupported export format: {fmt}")
