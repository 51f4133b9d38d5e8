"""Entrypoint for the workflow engine service."""

from __future__ import annotations

import asyncio
import time

from fastapi import FastAPI

from src.common.db import create_schema, dispose_engine, run_migrations
from src.common.logging import setup_logging
from src.common.metrics import JOB_DURATION, setup_metrics
from src.common.settings import settings
from src.common.telemetry import setup_otel

from . import api, deps

setup_logging(settings.log_level)

app = FastAPI(title="workflow_engine")
setup_metrics(app, "workflow_engine")
setup_otel(app, "workflow_engine")
app.include_router(api.router)


@app.on_event("startup")
async def startup() -> None:
    start = time.perf_counter()
    if deps.get_settings().create_schema_on_startup:
        await create_schema()
    else:
        # env.py drives its own event loop, so migrations run off this one.
        await asyncio.to_thread(run_migrations)
    deps.get_coordinator()
    JOB_DURATION.labels("workflow_engine", "startup").observe(
        time.perf_counter() - start
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    await deps.shutdown_coordinator()
    await dispose_engine()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, str]:
    return {"status": "ready"}
