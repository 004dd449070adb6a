# modules/kpis/routes.py
import uuid
from typing import AsyncIterator

import duckdb
import httpx
from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ai_insights.kpi_interpreter import MissingApiKeyError, UpstreamError, interpret_kpis
from config.settings import Settings, get_settings
from core.database import AnalyticsEngine, get_engine
from core.logging import get_logger
from modules.kpis.schemas import ErrorResponse, InterpretResponse, MetricsRow
from modules.kpis.service import PROCESSING_ERROR, MetricsQueryError, compute_metrics

logger = get_logger(__name__)

router = APIRouter(prefix="/api/kpis", tags=["KPIs"])


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.GROQ_TIMEOUT_SECONDS) as client:
        yield client


@router.post(
    "/interpret",
    response_model=InterpretResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def interpret(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        body = await request.json()
        kpis = body.get("kpis") if isinstance(body, dict) else None
        logger.info("interpret_requested", kpis=kpis)

        if not isinstance(kpis, dict):
            return JSONResponse({"error": "KPIs are required"}, status_code=400)

        bullets = await interpret_kpis(kpis, settings, client)
        return InterpretResponse(bullets=bullets)
    except (MissingApiKeyError, UpstreamError) as e:
        return JSONResponse({"error": str(e)}, status_code=500)
    except Exception:
        logger.exception("interpret_failed")
        return JSONResponse({"error": "Failed to interpret KPIs"}, status_code=500)


@router.post(
    "/compute",
    response_model=MetricsRow,
    responses={400: {"model": ErrorResponse}},
)
async def compute(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
    engine: AnalyticsEngine = Depends(get_engine),
):
    data = await file.read()
    logger.info("upload_received", filename=file.filename, bytes=len(data))

    # Per-request table so API callers never clobber the dashboard's upload
    table = f"{settings.BILLING_TABLE}_{uuid.uuid4().hex}"
    try:
        await run_in_threadpool(engine.register, table, data)
        return await run_in_threadpool(compute_metrics, engine, table)
    except (duckdb.Error, MetricsQueryError):
        return JSONResponse({"error": PROCESSING_ERROR}, status_code=400)
    finally:
        await run_in_threadpool(engine.unregister, table)
