import logging
import os
from typing import Callable, Iterable, Optional, Set

from fastapi import Depends, HTTPException

from manuscripta.core.auth_utils import get_current_user
from manuscripta.core.errors import AuthorizationError
from manuscripta.core.role_matrix import can_perform_action
from manuscripta.lib.api_client import supabase_admin
from manuscripta.models.user import AccountStatus, Actor

logger = logging.getLogger("manuscripta.auth")


def _parse_admin_emails() -> Set[str]:
    raw = os.environ.get("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def _is_admin_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in _parse_admin_emails()


async def get_current_profile(current_user: dict = Depends(get_current_user)) -> dict:
    """
    获取当前用户的 profile（含 roles / account_status）。

    中文注释:
    1) 角色管理在应用层完成（user_profiles.roles 为 text[]）。
    2) 首次访问时自动创建 user_profiles 记录，默认 roles=['author']。
    3) 若 email 在 ADMIN_EMAILS 中，则自动补齐 admin/editor/reviewer 权限，便于本地/演示测试。
    4) 被停用/封禁的账号直接 403。
    """
    user_id = current_user["id"]
    email = current_user.get("email")

    roles = ["author"]
    if _is_admin_email(email):
        roles = ["admin", "editor", "reviewer", "author"]

    try:
        resp = supabase_admin.table("user_profiles").select("*").eq("id", user_id).execute()
        existing = (resp.data or [None])[0]
        if existing:
            existing_roles = existing.get("roles") or []
            if _is_admin_email(email):
                merged = list(dict.fromkeys([*roles, *existing_roles]))
                if merged != existing_roles:
                    supabase_admin.table("user_profiles").update({"roles": merged}).eq("id", user_id).execute()
                    existing["roles"] = merged
            profile = existing
        else:
            inserted = (
                supabase_admin.table("user_profiles")
                .insert(
                    {
                        "id": user_id,
                        "email": email,
                        "roles": roles,
                        "account_status": AccountStatus.ACTIVE.value,
                    }
                )
                .execute()
            )
            profile = (inserted.data or [{"id": user_id, "email": email, "roles": roles}])[0]
    except Exception as e:
        logger.warning("[Auth] fetch/create user profile failed (degraded): %s", e)
        # 最小化降级：至少把用户身份返回给上层，避免 UI 完全不可用
        return {"id": user_id, "email": email, "roles": roles}

    status = str(profile.get("account_status") or AccountStatus.ACTIVE.value).lower()
    if status != AccountStatus.ACTIVE.value:
        raise HTTPException(status_code=403, detail=f"Account is {status}")
    return profile


async def get_current_actor(profile: dict = Depends(get_current_profile)) -> Actor:
    return Actor.from_profile(profile)


def require_any_role(required: Iterable[str]) -> Callable[[dict], dict]:
    required_set = {r for r in required}

    async def _dep(profile: dict = Depends(get_current_profile)) -> dict:
        roles = set(profile.get("roles") or [])
        if not roles.intersection(required_set):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return profile

    return _dep


def require_capability(action: str) -> Callable[[Actor], Actor]:
    """
    路由级能力门禁（role_matrix 动作名），通过后返回当前 Actor。
    """

    async def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not can_perform_action(action=action, roles=actor.roles):
            raise AuthorizationError(f"Missing capability: {action}", context={"required": action})
        return actor

    return _dep
