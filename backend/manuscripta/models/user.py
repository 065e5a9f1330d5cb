from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, field_validator


class UserRole(str, Enum):
    AUTHOR = "author"
    EDITOR = "editor"
    REVIEWER = "reviewer"
    ADMIN = "admin"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


ALLOWED_USER_ROLES = {r.value for r in UserRole}


@dataclass(frozen=True)
class Actor:
    """
    当前操作人（显式传入服务层，替代全局“当前 token”）。

    中文注释:
    - roles 非互斥：同一账号可以在不同稿件上分别是作者/审稿人/编辑。
    """

    id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    email: Optional[str] = None

    @staticmethod
    def from_profile(profile: dict[str, Any]) -> "Actor":
        roles = frozenset(str(r or "").strip().lower() for r in (profile.get("roles") or []) if r)
        return Actor(id=str(profile.get("id") or ""), roles=roles, email=profile.get("email"))

    def has_role(self, *roles: str) -> bool:
        return bool(self.roles.intersection(roles))


def normalize_roles(values: Iterable[str] | None) -> list[str]:
    out: list[str] = []
    for raw in values or []:
        role = str(raw or "").strip().lower()
        if role and role not in out:
            out.append(role)
    return out


class UserUpdateRequest(BaseModel):
    roles: Optional[list[str]] = None
    account_status: Optional[AccountStatus] = None
    full_name: Optional[str] = Field(default=None, max_length=200)

    @field_validator("roles")
    @classmethod
    def _validate_roles(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        roles = normalize_roles(value)
        if not roles:
            raise ValueError("roles must not be empty")
        unknown = [r for r in roles if r not in ALLOWED_USER_ROLES]
        if unknown:
            raise ValueError(f"Unknown roles: {', '.join(unknown)}")
        return roles
