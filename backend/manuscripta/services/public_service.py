from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from manuscripta.core.doi_generator import doi_url
from manuscripta.core.errors import NotFoundError, ValidationError
from manuscripta.lib.api_client import extract_count, extract_rows, supabase_admin
from manuscripta.models.issue import IssueStatus
from manuscripta.models.submission import SubmissionStatus

logger = logging.getLogger("manuscripta.public")

# 公开接口只返回这些列（不含 manuscript_files / 审稿信息 / 作者邮箱）
PUBLIC_ARTICLE_COLUMNS = "id,title,abstract,keywords,co_authors,author_id,doi,published_at"

# 对读者可见的卷期状态
PUBLIC_ISSUE_STATUSES = (IssueStatus.PUBLISHED.value, IssueStatus.ARCHIVED.value)

# 单个检索通道的候选上限
_SEARCH_CANDIDATES = 500


def _page_bounds(page: int, limit: int, *, max_limit: int = 50) -> tuple[int, int, int]:
    page = max(int(page or 1), 1)
    limit = max(min(int(limit or 10), max_limit), 1)
    return page, limit, (page - 1) * limit


class PublicCatalogService:
    """
    读者侧（无需登录）的期刊目录：文章详情、检索、卷期归档与统计。

    中文注释:
    - 只暴露 status=published 的稿件；未发表稿件一律 404，不区分“不存在”与“未公开”；
    - 作者只展示姓名与单位，邮箱不出现在公开数据里。
    """

    def __init__(self, client: Any = None) -> None:
        self.client = client if client is not None else supabase_admin

    # === helpers ===

    def _author_names(self, author_ids: list[str]) -> dict[str, str]:
        ids = sorted({i for i in author_ids if i})
        if not ids:
            return {}
        rows = extract_rows(self.client.table("user_profiles").select("id,full_name").in_("id", ids).execute())
        return {str(r.get("id")): str(r.get("full_name") or "").strip() for r in rows if r.get("full_name")}

    @staticmethod
    def _public_article(row: dict[str, Any], author_name: Optional[str]) -> dict[str, Any]:
        authors: list[dict[str, Any]] = []
        if author_name:
            authors.append({"name": author_name, "affiliation": None})
        for co in sorted(row.get("co_authors") or [], key=lambda c: int(c.get("order") or 0)):
            name = str(co.get("name") or "").strip()
            if name and name.lower() not in {a["name"].lower() for a in authors}:
                authors.append({"name": name, "affiliation": co.get("affiliation")})
        doi = row.get("doi")
        return {
            "id": row.get("id"),
            "title": row.get("title"),
            "abstract": row.get("abstract"),
            "keywords": list(row.get("keywords") or []),
            "authors": authors or [{"name": "Author", "affiliation": None}],
            "doi": doi,
            "doi_url": doi_url(doi),
            "published_at": row.get("published_at"),
        }

    def _project(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        names = self._author_names([str(r.get("author_id") or "") for r in rows])
        return [self._public_article(r, names.get(str(r.get("author_id") or ""))) for r in rows]

    def _placements(self, submission_ids: list[str]) -> dict[str, dict[str, Any]]:
        """submission_id -> 所在公开卷期及页码"""
        if not submission_ids:
            return {}
        links = extract_rows(
            self.client.table("issue_articles")
            .select("issue_id,submission_id,page_start,page_end")
            .in_("submission_id", submission_ids)
            .execute()
        )
        issue_ids = sorted({str(link["issue_id"]) for link in links if link.get("issue_id")})
        if not issue_ids:
            return {}
        issues = {
            str(i["id"]): i
            for i in extract_rows(
                self.client.table("issues")
                .select("id,volume,number,year,title")
                .in_("id", issue_ids)
                .in_("status", list(PUBLIC_ISSUE_STATUSES))
                .execute()
            )
        }
        out: dict[str, dict[str, Any]] = {}
        for link in links:
            issue = issues.get(str(link.get("issue_id")))
            if issue is None:
                continue
            out[str(link["submission_id"])] = {
                "issue_id": issue["id"],
                "volume": issue.get("volume"),
                "number": issue.get("number"),
                "year": issue.get("year"),
                "title": issue.get("title"),
                "page_start": link.get("page_start"),
                "page_end": link.get("page_end"),
            }
        return out

    # === articles ===

    def get_article(self, article_id: str) -> dict[str, Any]:
        rows = extract_rows(
            self.client.table("submissions")
            .select(PUBLIC_ARTICLE_COLUMNS)
            .eq("id", article_id)
            .eq("status", SubmissionStatus.PUBLISHED.value)
            .limit(1)
            .execute()
        )
        return self._article_detail(rows, context={"article_id": article_id})

    def get_article_by_doi(self, doi: str) -> dict[str, Any]:
        value = str(doi or "").strip()
        if not value:
            raise ValidationError("doi is required")
        rows = extract_rows(
            self.client.table("submissions")
            .select(PUBLIC_ARTICLE_COLUMNS)
            .eq("doi", value)
            .eq("status", SubmissionStatus.PUBLISHED.value)
            .limit(1)
            .execute()
        )
        return self._article_detail(rows, context={"doi": value})

    def _article_detail(self, rows: list[dict[str, Any]], *, context: dict[str, Any]) -> dict[str, Any]:
        if not rows:
            raise NotFoundError("Article not found", context=context)
        article = self._project(rows)[0]
        article["issue"] = self._placements([str(article["id"])]).get(str(article["id"]))
        return article

    def search(
        self,
        q: Optional[str] = None,
        *,
        year: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict[str, Any]:
        """
        检索已发表文章：标题 / 摘要模糊匹配（不区分大小写）+ 关键词整词匹配，可按发表年份过滤。

        中文注释: PostgREST 的 or 过滤在不同客户端版本上写法不一，这里分通道查询后在内存合并去重。
        """
        page, limit, offset = _page_bounds(page, limit)
        term = " ".join(str(q or "").split())

        def _base():
            query = (
                self.client.table("submissions")
                .select(PUBLIC_ARTICLE_COLUMNS)
                .eq("status", SubmissionStatus.PUBLISHED.value)
            )
            if year is not None:
                query = query.gte("published_at", f"{int(year):04d}-01-01").lt("published_at", f"{int(year) + 1:04d}-01-01")
            return query

        if term:
            pattern = f"%{term}%"
            channels = [
                _base().ilike("title", pattern),
                _base().ilike("abstract", pattern),
                _base().contains("keywords", [term]),
            ]
        else:
            channels = [_base()]

        merged: dict[str, dict[str, Any]] = {}
        for query in channels:
            for row in extract_rows(query.order("published_at", desc=True).limit(_SEARCH_CANDIDATES).execute()):
                merged.setdefault(str(row.get("id")), row)

        ordered = sorted(merged.values(), key=lambda r: str(r.get("published_at") or ""), reverse=True)
        window = ordered[offset : offset + limit]
        return {"data": self._project(window), "total": len(ordered), "page": page, "limit": limit, "q": term or None}

    # === issues ===

    def archive(self, *, page: int = 1, limit: int = 10) -> dict[str, Any]:
        """
        按卷期归档：已发布/已归档的卷期（新到旧），每期附带目录。
        """
        page, limit, offset = _page_bounds(page, limit)
        resp = (
            self.client.table("issues")
            .select("id,volume,number,year,title,status,published_at,is_current", count="exact")
            .in_("status", list(PUBLIC_ISSUE_STATUSES))
            .order("year", desc=True)
            .order("volume", desc=True)
            .order("number", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        issues = extract_rows(resp)
        issue_ids = [str(i["id"]) for i in issues]

        links: list[dict[str, Any]] = []
        if issue_ids:
            links = extract_rows(
                self.client.table("issue_articles")
                .select("issue_id,submission_id,position,page_start,page_end")
                .in_("issue_id", issue_ids)
                .order("position", desc=False)
                .execute()
            )
        sub_ids = sorted({str(link["submission_id"]) for link in links})
        articles: dict[str, dict[str, Any]] = {}
        if sub_ids:
            rows = extract_rows(
                self.client.table("submissions")
                .select(PUBLIC_ARTICLE_COLUMNS)
                .in_("id", sub_ids)
                .eq("status", SubmissionStatus.PUBLISHED.value)
                .execute()
            )
            articles = {str(a["id"]): a for a in self._project(rows)}

        for issue in issues:
            toc = []
            for link in links:
                if str(link.get("issue_id")) != str(issue["id"]):
                    continue
                article = articles.get(str(link.get("submission_id")))
                if article is None:
                    continue
                toc.append({**article, "page_start": link.get("page_start"), "page_end": link.get("page_end")})
            issue["articles"] = toc
            issue["article_count"] = len(toc)

        return {"data": issues, "total": extract_count(resp), "page": page, "limit": limit}

    # === stats ===

    def journal_stats(self, *, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        total_articles = extract_count(
            self.client.table("submissions")
            .select("id", count="exact")
            .eq("status", SubmissionStatus.PUBLISHED.value)
            .execute()
        )
        total_issues = extract_count(
            self.client.table("issues").select("id", count="exact").in_("status", list(PUBLIC_ISSUE_STATUSES)).execute()
        )
        current_year = extract_count(
            self.client.table("submissions")
            .select("id", count="exact")
            .eq("status", SubmissionStatus.PUBLISHED.value)
            .gte("published_at", f"{now.year:04d}-01-01")
            .execute()
        )
        recent = extract_rows(
            self.client.table("submissions")
            .select(PUBLIC_ARTICLE_COLUMNS)
            .eq("status", SubmissionStatus.PUBLISHED.value)
            .order("published_at", desc=True)
            .limit(5)
            .execute()
        )
        return {
            "total_articles": total_articles,
            "total_issues": total_issues,
            "current_year_articles": current_year,
            "recent_articles": self._project(recent),
        }
