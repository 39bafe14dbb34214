"""FastAPI 主应用入口"""
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path, override=True)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import register_exception_handlers
from app.api.routes import trading
from app.api.websocket import router as websocket_router
from app.core.config import get_settings
from app.services.container import get_container
from copytrade import __version__
from copytrade.utils.logger import FlushingStreamHandler, setup_logger


settings = get_settings()
log_level = (settings.log_level or "INFO").upper()

root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, log_level, logging.INFO))
handler = FlushingStreamHandler(sys.stdout)
handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
root_logger.addHandler(handler)
setup_logger(level=log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 60)
    logger.info(f"{settings.app_name} 启动中...")
    logger.info("=" * 60)

    container = get_container()
    container.start()

    logger.info("✅ Backend 启动完成")

    yield

    logger.info(f"{settings.app_name} 关闭中...")
    await container.shutdown()
    logger.info("Backend 已关闭")


app = FastAPI(
    title="Copy Trading API",
    description="父子账户订单复制 API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(trading.router)
app.include_router(websocket_router)


@app.get("/")
async def root():
    """根路径"""
    return {
        "name": "Copy Trading API",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    container = get_container()
    return {
        "status": "healthy",
        "reconciler_running": container.reconciler.running,
        "websocket_clients": container.event_bus.websocket_count,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
