import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("manuscripta")

_SENTRY_ENABLED = False
try:
    from manuscripta.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
    if _SENTRY_ENABLED:
        logger.info("[sentry] enabled")
except Exception as e:
    # 中文注释: Sentry 任何异常不得阻塞启动
    logger.warning("[sentry] init failed (ignored): %s", e)

from manuscripta.api.v1 import (  # noqa: E402
    admin,
    complaints,
    editor,
    internal,
    issues,
    notifications,
    payments,
    public,
    reviews,
    submissions,
)
from manuscripta.core.middleware import install_exception_handlers  # noqa: E402

app = FastAPI(
    title="Manuscripta API",
    description="Academic journal submission, review and publication backend",
    version="1.0.0",
)


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins（FRONTEND_ORIGINS 逗号分隔，默认 localhost:3000）。
    """
    origins: list[str] = []
    single = (os.environ.get("FRONTEND_ORIGIN") or "").strip()
    if single:
        origins.append(single.rstrip("/"))
    for part in (os.environ.get("FRONTEND_ORIGINS") or "").split(","):
        o = part.strip().rstrip("/")
        if o:
            origins.append(o)
    if not origins:
        origins = ["http://localhost:3000"]
    return list(dict.fromkeys(origins))


# === 中间件配置 ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_exception_handlers(app)

# === 路由注册 ===
app.include_router(submissions.router, prefix="/api/v1")
app.include_router(reviews.router, prefix="/api/v1")
app.include_router(editor.router, prefix="/api/v1")
app.include_router(payments.router, prefix="/api/v1")
app.include_router(issues.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(complaints.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")
app.include_router(internal.router, prefix="/api/v1")
app.include_router(public.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "Manuscripta API is running", "docs": "/docs"}
