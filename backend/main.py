"""
Titan 素材平台 - 后端主入口

用户、素材、阿里云盘 WebDAV、内容生产任务与 AI 图片生成的 FastAPI 应用
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config import APP_NAME, APP_VERSION, CORS_ORIGINS, LOG_DIR, LOG_LEVEL

# 日志配置
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
_file_handler = logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8")
_file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
logging.getLogger().addHandler(_file_handler)

logger = logging.getLogger(__name__)

ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    406: "NOT_ACCEPTABLE",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}

# 不缓存的 GET 路径后缀（轮询接口）
NO_CACHE_SUFFIXES = ("/progress", "/health")


# HTTP 缓存中间件
class CacheControlMiddleware(BaseHTTPMiddleware):
    """
    添加 HTTP 缓存控制头

    - 文件下载、任务进度：不缓存
    - 列表查询（jobs, assets, files, history）：私有缓存 10 秒
    - 其他 GET 请求：私有缓存 5 秒
    - POST/PUT/DELETE 请求：不缓存
    """
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        path = request.url.path
        cacheable = not path.endswith(NO_CACHE_SUFFIXES) and "/files/download" not in path
        if request.method == "GET" and response.status_code == 200 and cacheable:
            if path.rstrip("/").endswith(("/jobs", "/assets", "/files", "/history", "/users")):
                response.headers["Cache-Control"] = "private, max-age=10"
            else:
                response.headers["Cache-Control"] = "private, max-age=5"
        else:
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"

        return response


# 请求日志中间件
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = int((time.time() - start) * 1000)

        client_ip = request.client.host if request.client else "-"
        message = f"{request.method} {request.url.path} {response.status_code} {client_ip} {duration_ms}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    from database.models import init_db
    init_db()
    logger.info(f"{APP_NAME} v{APP_VERSION} started")
    yield
    from services.content_job_service import get_content_job_service
    get_content_job_service().runner.shutdown(wait=False)
    logger.info(f"{APP_NAME} stopped")


# 创建FastAPI应用
app = FastAPI(
    title=APP_NAME,
    description="内容创作平台后端：素材管理、阿里云盘 WebDAV、内容生产任务与 AI 图片生成",
    version=APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(CacheControlMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Cache-Control", "Content-Disposition"],
)


def error_response(request: Request, status_code: int, message) -> JSONResponse:
    """统一错误响应格式"""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {
                "code": ERROR_CODES.get(status_code, "UNKNOWN_ERROR"),
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "path": request.url.path,
                "statusCode": status_code,
            },
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(request, exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return error_response(request, 422, "; ".join(messages))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(request, 500, "Internal server error")


# 导入路由
from api.users import router as users_router
from api.aliyun_drive import router as aliyun_drive_router
from api.assets import router as assets_router
from api.content_jobs import router as content_jobs_router
from api.ai_images import router as ai_images_router

# 注册路由
app.include_router(users_router, prefix="/api/users", tags=["users"])
app.include_router(aliyun_drive_router, prefix="/api/aliyun-drive", tags=["aliyun-drive"])
app.include_router(assets_router, prefix="/api/assets", tags=["assets"])
app.include_router(content_jobs_router, prefix="/api/jobs", tags=["content-jobs"])
app.include_router(ai_images_router, prefix="/api/ai-image", tags=["ai-image"])


@app.get("/")
async def root():
    """根路由"""
    return {
        "message": APP_NAME,
        "version": APP_VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        access_log=False  # 由 RequestLoggingMiddleware 记录请求
    )
