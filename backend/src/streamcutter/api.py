"""
FastAPI service for StreamCutter.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from opentelemetry.instrumentation.asyncio import AsyncioInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from pydantic import BaseModel
from starlette.background import BackgroundTask

from streamcutter.config import Config, get_config
from streamcutter.errors import ErrCode, category_of
from streamcutter.janitor import TempJanitor
from streamcutter.models import CutRequest
from streamcutter.orchestrator import CutOrchestrator
from streamcutter.process_runner import check_binary
from streamcutter.temp_files import TempNamespace
from streamcutter.validation import content_type_for

logger = logging.getLogger(__name__)

# Server-side problems; everything else is the upload's fault.
_SERVER_ERROR_CODES = {ErrCode.STORAGE, ErrCode.SPAWN, ErrCode.UNEXPECTED}


class HealthResponse(BaseModel):
    status: str


class CleanupResponse(BaseModel):
    message: str
    deleted: int
    failed: int


def status_code_for(code: Optional[ErrCode]) -> int:
    if code is None or code in _SERVER_ERROR_CODES:
        return 500
    return 400


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    stream = upload.file
    position = stream.tell()
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(position)
    return size


def create_app(
    config: Optional[Config] = None,
    *,
    orchestrator: Optional[CutOrchestrator] = None,
    janitor: Optional[TempJanitor] = None,
    probe_binary: bool = True,
) -> FastAPI:
    config = config or get_config()
    namespace = orchestrator.namespace if orchestrator else TempNamespace(config.resolved_temp_dir)
    orchestrator = orchestrator or CutOrchestrator(config=config, namespace=namespace)
    janitor = janitor or TempJanitor(
        namespace,
        retention_age_seconds=config.retention_age_seconds,
        interval_seconds=config.cleanup_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in config.warnings():
            logger.warning("config.warning %s", warning)

        if config.enable_tracing:
            AsyncioInstrumentor().instrument()

        namespace.ensure_directory()
        if probe_binary:
            await check_binary(config.ffmpeg_path)

        # Clear leftovers from a previous run before serving.
        try:
            report = await janitor.sweep_async()
        except OSError as exc:
            logger.error("janitor.startup_sweep.failed error=%s", exc)
        else:
            logger.info("janitor.startup_sweep deleted=%d failed=%d", report.deleted, report.failed)
        janitor.start()
        try:
            yield
        finally:
            await janitor.stop()

    app = FastAPI(title="StreamCutter API", version="0.1.0", lifespan=lifespan)
    if config.enable_tracing:
        FastAPIInstrumentor.instrument_app(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.janitor = janitor

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/api/cut")
    async def cut_media(
        request: Request,
        file: Optional[UploadFile] = File(None),
        start_time: float = Form(..., alias="startTime"),
        end_time: float = Form(..., alias="endTime"),
    ):
        """Cut the uploaded media and return the clip as an attachment."""
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="Please choose a file to upload")
        size = _upload_size(file)
        if size == 0:
            raise HTTPException(status_code=400, detail="Please choose a file to upload")

        logger.info("api.cut file=%s range=%.2fs-%.2fs", file.filename, start_time, end_time)
        cutter: CutOrchestrator = request.app.state.orchestrator
        result = await cutter.cut(
            CutRequest(
                source_stream=file.file,
                original_file_name=file.filename,
                declared_content_type=file.content_type or "",
                size_bytes=size,
                start_seconds=start_time,
                end_seconds=end_time,
            )
        )
        if not result.success or result.output_path is None:
            category = category_of(result.error_code) if result.error_code else "unexpected"
            logger.error("api.cut.failed category=%s message=%s", category, result.message)
            raise HTTPException(status_code=status_code_for(result.error_code), detail=result.message)

        file_name = result.output_file_name or result.output_path.name
        return FileResponse(
            result.output_path,
            media_type=content_type_for(file_name),
            filename=file_name,
            background=BackgroundTask(cutter.namespace.delete, result.output_path),
        )

    @app.post("/api/cleanup", response_model=CleanupResponse)
    async def cleanup_temp_files(request: Request) -> CleanupResponse:
        """Run one janitor sweep now."""
        sweeper: TempJanitor = request.app.state.janitor
        try:
            report = await sweeper.sweep_async()
        except OSError as exc:
            logger.error("api.cleanup.failed error=%s", exc)
            raise HTTPException(status_code=500, detail="Failed to clean up temp files")
        return CleanupResponse(
            message="Temp files cleaned up",
            deleted=report.deleted,
            failed=report.failed,
        )

    return app


app = create_app()
