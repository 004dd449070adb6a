# modules/kpis/schemas.py
from pydantic import BaseModel
from typing import List, Optional

class MetricsRow(BaseModel):
    total_claims: int = 0
    total_billed: Optional[float] = None
    total_paid: Optional[float] = None
    collection_rate: Optional[float] = None
    revenue_per_claim: Optional[float] = None
    patient_responsibility_pct: Optional[float] = None
    insurance_collection_pct: Optional[float] = None
    avg_payment_days: Optional[float] = None

class InterpretResponse(BaseModel):
    bullets: List[str]

class ErrorResponse(BaseModel):
    error: str
