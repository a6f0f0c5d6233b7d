# src/proxisync/api/app.py
"""
FastAPI application wiring.

This file creates the `FastAPI` instance, installs CORS and error handlers, and mounts the
routes. Engine logic lives in `proxisync.engine` and the component packages.
"""

from __future__ import annotations

import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from proxisync.core.logging import configure_logging

from .routes import router

configure_logging()

app = FastAPI(title="ProxiSync API", version="0.1.0")

# Configure via env:
# - PROXISYNC_CORS_ORIGINS="http://localhost:5173,http://127.0.0.1:5173"
# - PROXISYNC_CORS_ALLOW_LOCAL=0 to disable the default localhost allowance
cors_origins = [s.strip() for s in os.getenv("PROXISYNC_CORS_ORIGINS", "").split(",") if s.strip()]
cors_allow_local = os.getenv("PROXISYNC_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
cors_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$" if cors_allow_local and not cors_origins else ""
if cors_origins or cors_origin_regex:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_origin_regex=cors_origin_regex or None,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "; ".join(str(e.get("msg", "")) for e in exc.errors()),
            }
        },
    )


app.include_router(router)
