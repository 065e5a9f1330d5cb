import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from manuscripta.core.errors import WorkflowError

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("manuscripta")


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件：请求耗时日志 + 兜底 500。
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(
                "Method: %s Path: %s Status: %s Time: %.4fs",
                request.method,
                request.url.path,
                response.status_code,
                process_time,
            )
            return response
        except WorkflowError as exc:
            return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
        except HTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "type": "http_exception"},
            )
        except Exception as e:
            logger.error("Unhandled Exception: %s", e, exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error, please contact the administrator", "type": "server_error"},
            )


async def workflow_error_handler(_request: Request, exc: WorkflowError) -> JSONResponse:
    # 中文注释: 业务错误属于预期分支，只记 info，不打堆栈
    logger.info("[Workflow] %s: %s", exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)  # type: ignore[arg-type]
    app.add_middleware(ExceptionHandlerMiddleware)
