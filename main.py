# main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from config.settings import get_settings
from core.database import get_engine
from core.logging import configure_logging, get_logger

# === IMPORT ALL ROUTERS ===
from modules.kpis.routes import router as kpis_router
from modules.dashboard.routes import router as dashboard_router

settings = get_settings()
configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    logger.info("engine_ready")
    yield
    engine.close()
    get_engine.cache_clear()
    logger.info("engine_closed")


app = FastAPI(
    title="Clinic KPI Dashboard",
    version="1.0.0",
    description="Billing CSV • KPI aggregation • AI interpretation",
    lifespan=lifespan,
)

# === CORS: Allow a separate frontend to call the API ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === INCLUDE ROUTERS ===
app.include_router(kpis_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


# === Run with uvicorn ===
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
