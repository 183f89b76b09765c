"""
CodeRelay FastAPI Application Entry Point
FastAPI 应用入口
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from coderelay import __version__
from coderelay.config import settings
from coderelay.dependencies import get_session_registry
from coderelay.routers import session_router
from coderelay.utils.logger import get_logger

logger = get_logger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])

# Create FastAPI application / 创建 FastAPI 应用
app = FastAPI(
    title="CodeRelay API",
    description="Codebase context engine for local language models / 面向本地大模型的代码库上下文引擎",
    version=__version__,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return a safe 500 response."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# 配置跨域 / Local tooling only
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(session_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint / 健康检查"""
    registry = get_session_registry()
    return {
        "status": "ok",
        "version": app.version,
        "open_sessions": len(registry.list_roots()),
    }


@app.on_event("shutdown")
async def on_shutdown():
    """Checkpoint and close every open session / 关闭时保存所有会话"""
    await get_session_registry().close_all()


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting CodeRelay API on %s:%s", settings.host, settings.port)
    uvicorn.run(
        "coderelay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
