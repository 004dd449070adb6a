# modules/dashboard/routes.py
from pathlib import Path

import httpx
from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from ai_insights.kpi_interpreter import interpret_kpis
from config.settings import Settings, get_settings
from core.database import AnalyticsEngine, get_engine
from modules.dashboard.service import (
    DashboardSession,
    SessionBusyError,
    format_metric_cards,
    get_session,
)
from modules.kpis.routes import get_http_client

router = APIRouter(tags=["Dashboard"])

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def render(request: Request, session: DashboardSession) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "session": session,
            "cards": format_metric_cards(session.metrics) if session.metrics else [],
        },
    )


@router.get("/", response_class=HTMLResponse)
async def dashboard(request: Request, session: DashboardSession = Depends(get_session)):
    return render(request, session)


@router.post("/upload", response_class=HTMLResponse)
async def upload(
    request: Request,
    file: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
    engine: AnalyticsEngine = Depends(get_engine),
    client: httpx.AsyncClient = Depends(get_http_client),
    session: DashboardSession = Depends(get_session),
):
    data = await file.read()

    async def interpreter(kpis):
        return await interpret_kpis(kpis, settings, client)

    try:
        await session.process_upload(file.filename, data, engine, settings.BILLING_TABLE, interpreter)
    except SessionBusyError:
        return JSONResponse({"error": "An upload is already being processed"}, status_code=409)
    return render(request, session)


@router.get("/api/dashboard/state")
async def dashboard_state(session: DashboardSession = Depends(get_session)):
    return session.as_dict()
