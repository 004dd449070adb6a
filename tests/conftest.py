"""Pytest configuration and fixtures for the KPI dashboard."""

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from config.settings import Settings, get_settings
from core.database import AnalyticsEngine, get_engine
from main import app
from modules.dashboard.service import DashboardSession, get_session
from modules.kpis.routes import get_http_client

HEADER = "InvoiceAmount,Paid,PTCopay,deduct,coins,PostedDt,DOS"

# Three claims, 350 billed, 280 paid, 50 patient responsibility, 10/20/30 days
SAMPLE_ROWS = [
    "100,80,10,5,5,2024-01-11,2024-01-01",
    "200,150,20,0,10,2024-01-21,2024-01-01",
    "50,50,0,0,0,2024-01-31,2024-01-01",
]

INTERPRETATION = {
    "totalClaims": "Three claims indicates a small sample of billing activity.",
    "totalBilled": "The billed total reflects the gross charges submitted.",
    "totalPaid": "The paid total shows the cash actually received.",
    "collectionRate": "An 80% rate means most billed dollars were collected.",
    "revenuePerClaim": "Revenue per claim shows the average cash yield per visit.",
    "patientResponsibilityPct": "This share of charges falls on patients.",
    "insuranceCollectionPct": "This share of charges was collected from payers.",
    "avgPaymentDays": "Twenty days on average separates service from posting.",
}


def make_csv(rows: List[str], header: str = HEADER) -> bytes:
    return ("\n".join([header] + rows) + "\n").encode("utf-8")


def chat_completion(content: Optional[str]) -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FakeGroq:
    """Stand-in for the chat-completion API; records every request it receives."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.response = httpx.Response(
            200, json=chat_completion(json.dumps({"interpretation": INTERPRETATION}))
        )
        self.error: Optional[Exception] = None

    def reply(self, content: Optional[str]) -> None:
        self.response = httpx.Response(200, json=chat_completion(content))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            self.response.status_code,
            headers=self.response.headers,
            content=self.response.content,
        )

    @property
    def last_body(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def engine(tmp_path):
    eng = AnalyticsEngine(scratch_dir=str(tmp_path / "scratch"))
    yield eng
    eng.close()


@pytest.fixture
def sample_csv() -> bytes:
    return make_csv(SAMPLE_ROWS)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, GROQ_API_KEY="test-key")


@pytest.fixture
def groq() -> FakeGroq:
    return FakeGroq()


@pytest.fixture
def session() -> DashboardSession:
    return DashboardSession()


@pytest.fixture
def client(engine, settings, groq, session):
    async def http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(groq)) as c:
            yield c

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_http_client] = http_client
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()
