#!/usr/bin/env python3
"""
修复旧版本“审稿完成自动推进”遗留的 under_review 稿件。

默认行为：
- 找出 status=under_review 且没有任何非 declined 审稿邀请的稿件
- 退回 submitted，并写入 submission_timeline 修复记录
- 有有效审稿的稿件只打印，不改动

用法：
  python backend/scripts/repair_stranded_under_review.py --dry-run
  python backend/scripts/repair_stranded_under_review.py
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from manuscripta.services.maintenance_service import MaintenanceService  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reset under_review submissions that have no active reviewers")
    parser.add_argument("--dry-run", action="store_true", help="只报告，不写库")
    args = parser.parse_args(argv)

    load_dotenv(BACKEND_DIR / ".env")
    report = MaintenanceService().repair_stranded_under_review(dry_run=args.dry_run)
    print(json.dumps(report.as_dict(), indent=2, ensure_ascii=False))
    return 1 if report.conflicts else 0


if __name__ == "__main__":
    raise SystemExit(main())
