"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LocaleMiddleware, LoggingMiddleware, RequestIDMiddleware
from api.routes import admin as admin_routes
from api.routes import bookings as booking_routes
from api.routes import webhooks as webhook_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.i18n import t
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.database import create_tables
from infrastructure.external.cache import (
    get_redis_client,
    init_redis_client,
    redis_enabled,
    shutdown_redis_client,
)


# logging_config 导入时已配置；force 让 reload 后的进程重新挂 handler
configure_logging(force=True)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 仅开发环境自动建表，生产使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)",
        )
    if settings.redis.url:
        await init_redis_client()
        logger.info("redis_initialized", namespace=settings.redis.namespace)

    yield

    if settings.redis.url:
        await shutdown_redis_client()
        logger.info("redis_shutdown")
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Booking lifecycle, escrow release and provider payout settlement",
)

# 中间件执行顺序：从下往上
app.add_middleware(LocaleMiddleware)
app.add_middleware(LoggingMiddleware)
# Request ID 最外层，后续中间件和日志都能拿到 request_id
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(booking_routes.router, prefix="/api/v1")
app.include_router(admin_routes.router, prefix="/api/v1")
app.include_router(webhook_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
        message=t("success"),
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点；启用 Redis 幂等存储时一并探测"""
    data = {"status": "healthy"}
    if redis_enabled():
        redis_ok = await (await get_redis_client()).ping()
        data["redis"] = "ok" if redis_ok else "unreachable"
        if not redis_ok:
            data["status"] = "degraded"
    return success_response(data=data, message=t("health.ok"))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
