# shopbridge/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from shopbridge import __version__
from shopbridge.api.cors import INVOICE_PATH_REGEX, PathScopedCORSMiddleware
from shopbridge.api.routers.integrations import router as integrations_router
from shopbridge.core.config import get_settings
from shopbridge.core.logging import setup_logging
from shopbridge.db.session import close_engines, create_all
from shopbridge.http_problem_handlers import register_exception_handlers
from shopbridge.obs.metrics import PrometheusMiddleware
from shopbridge.obs.metrics import router as metrics_router

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
logger = logging.getLogger("shopbridge")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        logger.info("AUTO_CREATE_TABLES=1, creating tables")
        await create_all()
    yield
    await close_engines()


app = FastAPI(
    title="ShopBridge",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Shopify 店面页面跨域调用发票接口（仅此一个接口）
app.add_middleware(
    PathScopedCORSMiddleware,
    path_regex=INVOICE_PATH_REGEX,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

register_exception_handlers(app)

# ===========================
#          挂载路由
# ===========================
app.include_router(integrations_router)
app.include_router(metrics_router)


@app.get("/")
async def root():
    return {"name": "ShopBridge", "version": __version__}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
