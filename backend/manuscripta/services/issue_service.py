from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from manuscripta.core.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from manuscripta.core.role_matrix import can_perform_action
from manuscripta.lib.api_client import extract_rows, supabase_admin
from manuscripta.models.issue import AddArticleRequest, IssueCreate, IssueStatus
from manuscripta.models.submission import ISSUE_ELIGIBLE_STATUSES, SubmissionStatus, normalize_status
from manuscripta.models.user import Actor

logger = logging.getLogger("manuscripta.issues")


class IssueService:
    """
    期刊卷期（Issue）管理：草稿 -> 发布 -> 归档。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _require_manage(self, actor: Actor) -> None:
        if not can_perform_action(action="issue:manage", roles=actor.roles):
            raise AuthorizationError("Missing capability: issue:manage")

    def _get_issue_row(self, issue_id: str) -> dict[str, Any]:
        rows = extract_rows(self.client.table("issues").select("*").eq("id", issue_id).limit(1).execute())
        if not rows:
            raise NotFoundError("Issue not found", context={"issue_id": issue_id})
        return rows[0]

    def _articles(self, issue_id: str) -> list[dict[str, Any]]:
        return extract_rows(
            self.client.table("issue_articles")
            .select("*")
            .eq("issue_id", issue_id)
            .order("position", desc=False)
            .execute()
        )

    def _set_status(self, issue: dict[str, Any], *, expected: IssueStatus, payload: dict[str, Any]) -> dict[str, Any]:
        rows = extract_rows(
            self.client.table("issues")
            .update(payload)
            .eq("id", issue["id"])
            .eq("status", expected.value)
            .execute()
        )
        if not rows:
            raise ConcurrentModificationError("Issue was modified concurrently")
        return rows[0]

    # === reads ===

    def list_issues(self, *, status: Optional[str] = None) -> list[dict[str, Any]]:
        query = self.client.table("issues").select("*")
        if status:
            query = query.eq("status", str(status).strip().lower())
        return extract_rows(query.order("year", desc=True).order("volume", desc=True).order("number", desc=True).execute())

    def get_issue(self, issue_id: str) -> dict[str, Any]:
        issue = dict(self._get_issue_row(issue_id))
        issue["articles"] = self._articles(issue_id)
        return issue

    def get_current(self) -> Optional[dict[str, Any]]:
        rows = extract_rows(self.client.table("issues").select("*").eq("is_current", True).limit(1).execute())
        if not rows:
            return None
        return self.get_issue(str(rows[0]["id"]))

    # === writes ===

    def create_issue(self, payload: IssueCreate, actor: Actor) -> dict[str, Any]:
        self._require_manage(actor)
        dup = extract_rows(
            self.client.table("issues")
            .select("id")
            .eq("volume", payload.volume)
            .eq("number", payload.number)
            .limit(1)
            .execute()
        )
        if dup:
            raise ValidationError(f"Issue {payload.volume}({payload.number}) already exists")

        now = self._now()
        rows = extract_rows(
            self.client.table("issues")
            .insert(
                {
                    "volume": payload.volume,
                    "number": payload.number,
                    "year": payload.year,
                    "title": payload.title,
                    "status": IssueStatus.DRAFT.value,
                    "is_current": False,
                    "created_by": actor.id,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            .execute()
        )
        if not rows:
            raise InvalidStateError("Failed to create issue", status_code=500)
        return rows[0]

    def add_article(self, issue_id: str, payload: AddArticleRequest, actor: Actor) -> dict[str, Any]:
        self._require_manage(actor)
        issue = self._get_issue_row(issue_id)
        if issue.get("status") != IssueStatus.DRAFT.value:
            raise InvalidStateError("Articles can only be added to draft issues")

        subs = extract_rows(
            self.client.table("submissions")
            .select("id,title,status,withdrawn_at")
            .eq("id", payload.submission_id)
            .limit(1)
            .execute()
        )
        if not subs:
            raise NotFoundError("Submission not found", context={"submission_id": payload.submission_id})
        submission = subs[0]
        if normalize_status(submission.get("status")) not in ISSUE_ELIGIBLE_STATUSES:
            raise InvalidStateError("Only accepted or published submissions can be added to an issue")

        taken = extract_rows(
            self.client.table("issue_articles").select("issue_id").eq("submission_id", payload.submission_id).execute()
        )
        if taken:
            raise ValidationError("Submission is already assigned to an issue")

        articles = self._articles(issue_id)
        for a in articles:
            if payload.page_start <= int(a["page_end"]) and int(a["page_start"]) <= payload.page_end:
                raise ValidationError(
                    f"Pages {payload.page_start}-{payload.page_end} overlap an existing article",
                    context={"submission_id": a.get("submission_id")},
                )

        position = max((int(a.get("position") or 0) for a in articles), default=0) + 1
        rows = extract_rows(
            self.client.table("issue_articles")
            .insert(
                {
                    "issue_id": issue_id,
                    "submission_id": payload.submission_id,
                    "position": position,
                    "page_start": payload.page_start,
                    "page_end": payload.page_end,
                    "title": submission.get("title"),
                }
            )
            .execute()
        )
        if not rows:
            raise InvalidStateError("Failed to add article", status_code=500)
        return rows[0]

    def publish_issue(self, issue_id: str, actor: Actor) -> dict[str, Any]:
        self._require_manage(actor)
        issue = self._get_issue_row(issue_id)
        if issue.get("status") != IssueStatus.DRAFT.value:
            raise InvalidStateError(f"Only draft issues can be published (status={issue.get('status')})")

        articles = self._articles(issue_id)
        if not articles:
            raise InvalidStateError("Cannot publish an empty issue")
        ids = [str(a["submission_id"]) for a in articles]
        subs = extract_rows(self.client.table("submissions").select("id,status").in_("id", ids).execute())
        published = {str(s["id"]) for s in subs if normalize_status(s.get("status")) == SubmissionStatus.PUBLISHED.value}
        missing = [sid for sid in ids if sid not in published]
        if missing:
            raise InvalidStateError(
                "All articles must be published before the issue",
                context={"unpublished": missing},
            )

        now = self._now()
        updated = self._set_status(
            issue,
            expected=IssueStatus.DRAFT,
            payload={"status": IssueStatus.PUBLISHED.value, "published_at": now, "updated_at": now},
        )
        logger.info("[Issues] published: issue=%s articles=%s", issue_id, len(articles))
        return updated

    def archive_issue(self, issue_id: str, actor: Actor) -> dict[str, Any]:
        self._require_manage(actor)
        issue = self._get_issue_row(issue_id)
        if issue.get("status") != IssueStatus.PUBLISHED.value:
            raise InvalidStateError("Only published issues can be archived")
        return self._set_status(
            issue,
            expected=IssueStatus.PUBLISHED,
            payload={"status": IssueStatus.ARCHIVED.value, "is_current": False, "updated_at": self._now()},
        )

    def set_current(self, issue_id: str, actor: Actor) -> dict[str, Any]:
        self._require_manage(actor)
        issue = self._get_issue_row(issue_id)
        if issue.get("status") != IssueStatus.PUBLISHED.value:
            raise InvalidStateError("Only published issues can be marked current")

        self.client.table("issues").update({"is_current": False}).eq("is_current", True).neq("id", issue_id).execute()
        rows = extract_rows(
            self.client.table("issues").update({"is_current": True, "updated_at": self._now()}).eq("id", issue_id).execute()
        )
        return rows[0] if rows else issue
