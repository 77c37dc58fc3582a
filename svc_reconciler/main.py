from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .env_settings import get_env
from .log_config import setup_logging
from .routers.reconcile import router as reconcile_router
from .schema import ensure_schema


@asynccontextmanager
async def lifespan(app: FastAPI):
    env = get_env()
    setup_logging(level=env.log_level, retention_days=env.log_retention_days, max_size_mb=env.log_max_size_mb)
    ensure_schema()
    yield


app = FastAPI(title="Service Account Reconciler", lifespan=lifespan)
app.include_router(reconcile_router)
