import os
from typing import Any, Callable, Optional

from supabase import Client, create_client

from manuscripta.core.config import app_config

url: str = app_config.supabase_url

# 中文注释:
# - 历史原因：部署环境里同时存在 SUPABASE_KEY 与 SUPABASE_ANON_KEY（两者在多数环境下等价）。
# - 优先读 SUPABASE_ANON_KEY，缺省时回退到 SUPABASE_KEY。
key: str = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_KEY") or ""

service_role_key: str = app_config.supabase_key or os.environ.get(
    "SUPABASE_SERVICE_ROLE_KEY", ""
)


class _LazySupabaseClient:
    """
    延迟初始化 Supabase Client，避免在 import 时因为缺少环境变量导致整个模块导入失败。

    中文注释:
    - 单元测试会注入 fake client 或 patch `supabase_admin`，因此这里必须保证“可导入”。
    - 真实运行时，如果缺少 URL/KEY，在第一次访问 client 时抛出清晰错误即可。
    """

    def __init__(self, factory: Callable[[], Client], *, name: str):
        self._factory = factory
        self._name = name
        self._client: Optional[Client] = None

    def _get(self) -> Client:
        if self._client is None:
            self._client = self._factory()
        return self._client

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)


def _require_supabase_url() -> str:
    if not url:
        raise RuntimeError("SUPABASE_URL is required")
    return url


def _require_anon_key() -> str:
    if not key:
        raise RuntimeError("SUPABASE_ANON_KEY or SUPABASE_KEY is required")
    return key


def _create_supabase() -> Client:
    return create_client(_require_supabase_url(), _require_anon_key())


def _create_supabase_admin() -> Client:
    admin_key = service_role_key or key
    if not admin_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required")
    return create_client(_require_supabase_url(), admin_key)


# === 统一 Supabase 客户端（延迟初始化） ===
supabase: Client = _LazySupabaseClient(_create_supabase, name="supabase")  # type: ignore[assignment]

# === 管理端 Supabase 客户端（延迟初始化，service_role 读写业务表） ===
supabase_admin: Client = _LazySupabaseClient(_create_supabase_admin, name="supabase_admin")  # type: ignore[assignment]


def extract_rows(resp: Any) -> list[dict[str, Any]]:
    """
    PostgREST 响应统一取 data 列表（single() 时 data 为 dict）。
    """
    data = getattr(resp, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def extract_count(resp: Any) -> int:
    count = getattr(resp, "count", None)
    if count is None:
        return len(extract_rows(resp))
    try:
        return int(count)
    except (TypeError, ValueError):
        return 0
