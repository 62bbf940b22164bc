#!/usr/bin/env python3
"""Clarity archive cleanup server (FastAPI).

- POST raw ZIP bytes, get back the analysis report and a download token
- Download the cleaned archive exactly once per token
- Results expire after a short time-to-live if never downloaded

Default host is 127.0.0.1 (localhost-only).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

try:
    from clarity_scripts.archive_cleanup_engine import (
        APP_NAME,
        DEFAULT_LOG_FILE,
        AnalysisResult,
        ArchiveAnalyzer,
        MalformedArchiveError,
        PipelineConfig,
        human_bytes,
        now_utc_iso,
        parse_size_to_bytes,
    )
    from clarity_scripts.result_store import ResultStore, StoreConfig
except ModuleNotFoundError:
    from archive_cleanup_engine import (
        APP_NAME,
        DEFAULT_LOG_FILE,
        AnalysisResult,
        ArchiveAnalyzer,
        MalformedArchiveError,
        PipelineConfig,
        human_bytes,
        now_utc_iso,
        parse_size_to_bytes,
    )
    from result_store import ResultStore, StoreConfig


DOWNLOAD_FILENAME = "clarity-cleaned.zip"
DEFAULT_MAX_UPLOAD = "200MB"


# ------------------------------- Logging ------------------------------------ #


def configure_logging(log_file: Path) -> logging.Logger:
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        log_file = Path(tempfile.gettempdir()) / APP_NAME / "server.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(APP_NAME)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


LOGGER = configure_logging(Path(os.getenv("CLARITY_LOG", str(DEFAULT_LOG_FILE))))


# ---------------------------- API Models ------------------------------------ #


class ServerSettings(BaseModel):
    max_upload_bytes: int = Field(default_factory=lambda: parse_size_to_bytes(os.getenv("CLARITY_MAX_UPLOAD_SIZE", DEFAULT_MAX_UPLOAD)), gt=0)
    analysis_workers: int = Field(default_factory=lambda: max(2, (os.cpu_count() or 4) // 2), gt=0)


class AnalysisPayload(BaseModel):
    download_token: str
    download_url: str
    expires_in_seconds: float
    report: dict[str, Any]


# ---------------------------- Response Helpers ------------------------------ #


def api_ok(data: Any, *, meta: dict[str, Any] | None = None, warnings: list[str] | None = None) -> JSONResponse:
    body = {
        "status": "ok",
        "timestamp": now_utc_iso(),
        "meta": meta or {},
        "warnings": warnings or [],
        "data": data,
    }
    return JSONResponse(body)


def api_error(code: str, message: str, status_code: int = 400, details: dict[str, Any] | None = None) -> JSONResponse:
    body = {
        "status": "error",
        "timestamp": now_utc_iso(),
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
    }
    return JSONResponse(body, status_code=status_code)


# ------------------------------- App Setup ---------------------------------- #


SETTINGS = ServerSettings()
PIPELINE_CONFIG = PipelineConfig.from_env()
STORE = ResultStore(StoreConfig.from_env(), logger=LOGGER)
EXECUTOR = ThreadPoolExecutor(max_workers=SETTINGS.analysis_workers)

app = FastAPI(
    title="Clarity Archive Cleanup Server",
    version="1.0.0",
    description="Deduplicate and clean ZIP archives; one-time download of the result.",
)


@app.on_event("startup")
async def _on_startup():
    STORE.start()
    LOGGER.info(
        "server_started ttl=%ss sweep=%ss max_upload=%s",
        STORE.config.ttl_seconds,
        STORE.config.sweep_interval_seconds,
        human_bytes(SETTINGS.max_upload_bytes),
    )


@app.on_event("shutdown")
async def _on_shutdown():
    STORE.stop()


@app.exception_handler(MalformedArchiveError)
async def malformed_archive_handler(_: Request, exc: MalformedArchiveError):
    LOGGER.warning("analysis_rejected err=%s", exc)
    return api_error("INVALID_ARCHIVE", str(exc), status_code=422)


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    LOGGER.exception("Unhandled server error: %s", exc)
    return api_error("INTERNAL_SERVER_ERROR", str(exc), status_code=500)


# ------------------------------ Analysis APIs ------------------------------- #


def run_analysis(data: bytes, filename: str) -> AnalysisResult:
    return ArchiveAnalyzer(PIPELINE_CONFIG, LOGGER).analyze(data, filename)


@app.post("/api/v1/analyze", summary="Analyze a ZIP archive (raw request body)")
async def analyze(request: Request, filename: str = "upload.zip"):
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > SETTINGS.max_upload_bytes:
        return api_error(
            "UPLOAD_TOO_LARGE",
            f"File size exceeds {human_bytes(SETTINGS.max_upload_bytes)} limit",
            status_code=413,
        )

    data = await request.body()
    if not data:
        return api_error("EMPTY_UPLOAD", "File is empty", status_code=400)
    if len(data) > SETTINGS.max_upload_bytes:
        return api_error(
            "UPLOAD_TOO_LARGE",
            f"File size exceeds {human_bytes(SETTINGS.max_upload_bytes)} limit",
            status_code=413,
        )

    LOGGER.info("analysis_request file=%s size=%s", filename, human_bytes(len(data)))
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(EXECUTOR, run_analysis, data, filename)

    report = result.report.to_dict()
    token = STORE.put_new(report, result.cleaned_archive)
    payload = AnalysisPayload(
        download_token=token,
        download_url=f"/api/v1/download/{token}",
        expires_in_seconds=STORE.config.ttl_seconds,
        report=report,
    )
    return api_ok(payload.model_dump(), meta={"type": "analysis"})


@app.get("/api/v1/download/{token}", summary="Download the cleaned archive (single use)")
async def download(token: str):
    record = STORE.get(token)
    if record is None:
        return api_error("TOKEN_NOT_FOUND", "Invalid or expired download token", status_code=404)

    LOGGER.info("download_served token_prefix=%s size=%s", token[:8], human_bytes(len(record.archive_bytes)))
    return Response(
        content=record.archive_bytes,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"'},
    )


# ------------------------------ Health & Root ------------------------------- #


@app.get("/healthz", summary="Liveness endpoint")
async def healthz():
    return api_ok({"service": "clarity-archive-cleaner", "healthy": True, "pending_results": len(STORE)})


@app.get("/", summary="Service index")
async def root_index():
    return api_ok(
        {
            "service": "clarity-archive-cleaner",
            "version": "1.0.0",
            "openapi": "/docs",
            "core_endpoints": [
                "/api/v1/analyze",
                "/api/v1/download/{token}",
            ],
            "limits": {
                "max_upload_bytes": SETTINGS.max_upload_bytes,
                "result_ttl_seconds": STORE.config.ttl_seconds,
            },
        }
    )


# --------------------------------- Runner ---------------------------------- #


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Clarity archive cleanup server")
    parser.add_argument("--host", default=os.getenv("CLARITY_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CLARITY_PORT", "8001")))
    parser.add_argument("--reload", action="store_true")
    return parser.parse_args()


def main() -> None:
    import uvicorn

    args = parse_args()
    LOGGER.info("Starting Clarity server host=%s port=%s", args.host, args.port)
    uvicorn.run(
        "clarity_scripts.archive_cleanup_server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
