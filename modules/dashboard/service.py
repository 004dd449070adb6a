# modules/dashboard/service.py
import asyncio
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List, Optional

import duckdb
from fastapi.concurrency import run_in_threadpool

from ai_insights.kpi_interpreter import InterpretationError
from core.database import AnalyticsEngine
from core.logging import get_logger
from modules.kpis.schemas import MetricsRow
from modules.kpis.service import PROCESSING_ERROR, MetricsQueryError, compute_metrics, to_kpi_payload

logger = get_logger(__name__)

Interpreter = Callable[[Dict[str, Any]], Awaitable[List[str]]]


class DashboardState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class SessionBusyError(Exception):
    """An upload is already being processed."""


class DashboardSession:
    """
    Transient dashboard state for one browser session.

    idle/ready/failed --upload--> loading --metrics + interpretation--> ready
                                  loading --query error--> failed

    An interpretation failure still lands in ready: the metrics are shown and
    the interpretation list stays empty. Any other failure before metrics
    exist lands in failed.
    """

    def __init__(self):
        self.state = DashboardState.IDLE
        self.metrics: Optional[MetricsRow] = None
        self.interpretation: List[str] = []
        self.filename: Optional[str] = None
        self.notice: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def loading(self) -> bool:
        return self.state == DashboardState.LOADING

    def _transition(self, state: DashboardState) -> None:
        logger.info("dashboard_transition", from_state=self.state.value, to_state=state.value)
        self.state = state

    def start_upload(self, filename: Optional[str]) -> None:
        self.metrics = None
        self.interpretation = []
        self.notice = None
        self.filename = filename
        self._transition(DashboardState.LOADING)

    def fail(self, notice: str = PROCESSING_ERROR) -> None:
        self.metrics = None
        self.interpretation = []
        self.notice = notice
        self._transition(DashboardState.FAILED)

    def metrics_ready(self, metrics: MetricsRow) -> None:
        self.metrics = metrics

    def interpretation_ready(self, bullets: List[str]) -> None:
        self.interpretation = list(bullets)
        self._transition(DashboardState.READY)

    async def process_upload(
        self,
        filename: Optional[str],
        data: bytes,
        engine: AnalyticsEngine,
        table: str,
        interpreter: Interpreter,
    ) -> None:
        """Register the file, aggregate it, then ask for an interpretation."""
        if self._lock.locked():
            raise SessionBusyError("An upload is already being processed")

        async with self._lock:
            self.start_upload(filename)
            try:
                await self._run_chain(filename, data, engine, table, interpreter)
            except Exception:
                logger.exception("upload_chain_failed", filename=filename)
                # Never leave the session stuck in loading
                if self.metrics is None:
                    self.fail()
                else:
                    self.interpretation_ready([])

    async def _run_chain(
        self,
        filename: Optional[str],
        data: bytes,
        engine: AnalyticsEngine,
        table: str,
        interpreter: Interpreter,
    ) -> None:
        try:
            await run_in_threadpool(engine.register, table, data)
            metrics = await run_in_threadpool(compute_metrics, engine, table)
        except (duckdb.Error, MetricsQueryError) as e:
            logger.warning("upload_failed", filename=filename, error=str(e))
            self.fail()
            return

        self.metrics_ready(metrics)
        try:
            bullets = await interpreter(to_kpi_payload(metrics))
        except InterpretationError as e:
            logger.warning("interpretation_unavailable", error=str(e))
            bullets = []
        self.interpretation_ready(bullets)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "loading": self.loading,
            "filename": self.filename,
            "metrics": self.metrics.model_dump() if self.metrics else None,
            "interpretation": self.interpretation,
            "notice": self.notice,
        }


def format_metric_cards(metrics: MetricsRow) -> List[Dict[str, str]]:
    def number(value: Optional[float]) -> str:
        if value is None:
            return "N/A"
        return f"{value:,.2f}".rstrip("0").rstrip(".")

    def money(value: Optional[float]) -> str:
        return "N/A" if value is None else f"${number(value)}"

    def pct(value: Optional[float]) -> str:
        return "N/A" if value is None else f"{number(value)}%"

    days = metrics.avg_payment_days
    return [
        {"title": "Total Claims", "value": f"{metrics.total_claims:,}"},
        {"title": "Total Billed", "value": money(metrics.total_billed)},
        {"title": "Total Paid", "value": money(metrics.total_paid)},
        {"title": "Collection Rate", "value": pct(metrics.collection_rate)},
        {"title": "Revenue / Claim", "value": money(metrics.revenue_per_claim)},
        {"title": "Patient Responsibility %", "value": pct(metrics.patient_responsibility_pct)},
        {"title": "Insurance Collection %", "value": pct(metrics.insurance_collection_pct)},
        {"title": "Avg Payment Days", "value": f"{days:.1f} days" if days is not None else "N/A"},
    ]


@lru_cache
def get_session() -> DashboardSession:
    return DashboardSession()
