from __future__ import annotations

from typing import Iterable

# 中文注释：
# - 这里集中定义“角色 -> 动作”权限矩阵，避免权限逻辑散落在各路由/服务。
# - 服务层只问 can_perform_action，不再 switch-on-role。

ADMIN_ROLE = "admin"

ROLE_ACTIONS: dict[str, set[str]] = {
    "author": {
        "submission:create",
        "submission:resubmit",
        "payment:create_intent",
    },
    "reviewer": {
        "review:respond",
        "review:submit",
    },
    "editor": {
        "submission:decide",
        "submission:view_all",
        "review:invite",
        "review:view_confidential",
        "payment:confirm_manual",
        "payment:refund",
        "issue:manage",
    },
    ADMIN_ROLE: {
        "*",
    },
}


def normalize_roles(roles: Iterable[str] | None) -> set[str]:
    """
    将输入角色归一化（小写、去空）。
    """
    out: set[str] = set()
    for raw in roles or []:
        role = str(raw or "").strip().lower()
        if not role:
            continue
        out.add(role)
    return out


def can_perform_action(*, action: str, roles: Iterable[str] | None) -> bool:
    """
    判定角色集合是否可执行某动作。

    中文注释：
    - admin 拥有全局通配权限；
    - 其余角色按 ROLE_ACTIONS 显式授权。
    """
    normalized = normalize_roles(roles)
    if ADMIN_ROLE in normalized:
        return True

    for role in normalized:
        allowed = ROLE_ACTIONS.get(role) or set()
        if "*" in allowed or action in allowed:
            return True
    return False

