from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID


def generate_doi(*, submission_id: str | UUID, prefix: str = "10.5555", journal_code: str = "manuscripta") -> str:
    """
    发表时分配 DOI

    规则:
    - 格式: {prefix}/{journal_code}.{year}.{8_char_id}
    - 8_char_id 取 submission UUID 的前 8 位（去掉短横线后）
    """
    year = datetime.now(timezone.utc).year
    short = str(submission_id).replace("-", "")[:8].lower()
    if not short:
        short = "unknown"
    return f"{prefix}/{journal_code}.{year}.{short}"


def doi_url(doi: str | None) -> str | None:
    """DOI 解析地址（https://doi.org/...）；无 DOI 返回 None"""
    value = str(doi or "").strip()
    if not value:
        return None
    return f"https://doi.org/{value}"
