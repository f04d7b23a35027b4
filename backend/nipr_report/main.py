from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from nipr_report.api.v1.router import router as v1_router
from nipr_report.core.config import get_settings, validate_startup_config
from nipr_report.core.logging import configure_logging
from nipr_report.infra.db.session import init_db

settings = get_settings()
configure_logging(logging.INFO)
validate_startup_config(settings)
init_db()

app = FastAPI(title=settings.app_name, version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router)

settings.output_dir.mkdir(parents=True, exist_ok=True)
app.mount("/nipr-downloads", StaticFiles(directory=str(settings.output_dir)), name="nipr-downloads")


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    return {"ok": "true"}
