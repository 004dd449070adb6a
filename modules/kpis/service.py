# modules/kpis/service.py
from typing import Dict, Optional

import duckdb

from core.database import AnalyticsEngine
from core.logging import get_logger
from modules.kpis.schemas import MetricsRow

logger = get_logger(__name__)

# MetricsRow field -> camelCase key sent for interpretation, in prompt order
KPI_KEYS = {
    'total_claims': 'totalClaims',
    'total_billed': 'totalBilled',
    'total_paid': 'totalPaid',
    'collection_rate': 'collectionRate',
    'revenue_per_claim': 'revenuePerClaim',
    'patient_responsibility_pct': 'patientResponsibilityPct',
    'insurance_collection_pct': 'insuranceCollectionPct',
    'avg_payment_days': 'avgPaymentDays',
}

KPI_QUERY = """
SELECT
  COUNT(*) AS total_claims,

  SUM(CAST(InvoiceAmount AS DOUBLE)) AS total_billed,
  SUM(CAST(Paid AS DOUBLE)) AS total_paid,

  ROUND(
    SUM(CAST(Paid AS DOUBLE)) /
    NULLIF(SUM(CAST(InvoiceAmount AS DOUBLE)), 0) * 100,
    2
  ) AS collection_rate,

  ROUND(
    SUM(CAST(Paid AS DOUBLE)) /
    NULLIF(COUNT(*), 0),
    2
  ) AS revenue_per_claim,

  ROUND(
    SUM(
      CAST(PTCopay AS DOUBLE)
      + CAST(deduct AS DOUBLE)
      + CAST(coins AS DOUBLE)
    ) /
    NULLIF(SUM(CAST(InvoiceAmount AS DOUBLE)), 0) * 100,
    2
  ) AS patient_responsibility_pct,

  ROUND(
    (
      SUM(CAST(Paid AS DOUBLE)) -
      SUM(
        CAST(PTCopay AS DOUBLE)
        + CAST(deduct AS DOUBLE)
        + CAST(coins AS DOUBLE)
      )
    ) /
    NULLIF(SUM(CAST(InvoiceAmount AS DOUBLE)), 0) * 100,
    2
  ) AS insurance_collection_pct,

  AVG(CAST(PostedDt AS DATE) - CAST(DOS AS DATE))
    FILTER (WHERE PostedDt IS NOT NULL AND DOS IS NOT NULL) AS avg_payment_days

FROM {table}
"""


PROCESSING_ERROR = "Error processing file. Check column names and formats."


class MetricsQueryError(Exception):
    """The uploaded file could not be aggregated (bad columns, bad values)."""


def build_kpi_query(table: str) -> str:
    return KPI_QUERY.format(table='"' + table.replace('"', '""') + '"')


def compute_metrics(engine: AnalyticsEngine, table: str) -> MetricsRow:
    try:
        rows = engine.query(build_kpi_query(table))
    except duckdb.Error as e:
        logger.warning("metrics_query_failed", table=table, error=str(e))
        raise MetricsQueryError(str(e)) from e

    if len(rows) != 1:
        raise MetricsQueryError(f"Expected one metrics row, got {len(rows)}")

    metrics = MetricsRow(**rows[0])
    logger.info("metrics_computed", table=table, total_claims=metrics.total_claims)
    return metrics


def to_kpi_payload(metrics: MetricsRow) -> Dict[str, Optional[float]]:
    values = metrics.model_dump()
    return {camel: values[field] for field, camel in KPI_KEYS.items()}
