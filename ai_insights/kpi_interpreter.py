import json
import re
from typing import Any, Dict, List, Optional

import httpx

from config.settings import Settings
from core.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = "You are a clear, concise healthcare revenue analytics assistant."

VOLUME_METRICS = ["totalClaims", "totalBilled", "totalPaid"]
NORMALIZED_KPIS = [
    "collectionRate",
    "revenuePerClaim",
    "patientResponsibilityPct",
    "insuranceCollectionPct",
    "avgPaymentDays",
]

_FENCE_JSON = re.compile(r"```json", re.IGNORECASE)


class InterpretationError(Exception):
    """Base class for failures that stop an interpretation request."""


class MissingApiKeyError(InterpretationError):
    pass


class UpstreamError(InterpretationError):
    pass


def interpretation_prompt(kpis: Dict[str, Any]) -> str:
    metrics_json = json.dumps(kpis, indent=2)
    keys = VOLUME_METRICS + NORMALIZED_KPIS
    shape = ",\n".join(f'    "{k}": "..."' for k in keys)
    return (
        "You are a healthcare revenue cycle analytics assistant.\n\n"
        "You are given clinic metrics consisting of:\n"
        "- Volume metrics that describe scale\n"
        "- Normalized KPIs that describe efficiency or timing\n\n"
        "For EACH metric, explain what the VALUE MEANS in practical terms.\n\n"
        f"Metrics (JSON):\n```json\n{metrics_json}\n```\n\n"
        "Instructions:\n"
        "- Write EXACTLY one sentence per metric.\n"
        "- Each sentence must:\n"
        "  1. Reference the metric value\n"
        "  2. Explain what that value indicates or implies\n"
        "- Do NOT repeat the raw number without interpretation.\n"
        "- Do NOT combine multiple metrics into one sentence.\n"
        "- Do NOT use judgmental language.\n"
        "- Focus on operational or financial meaning.\n\n"
        "Metrics to interpret (use these exact keys):\n\n"
        "Volume metrics:\n"
        + "".join(f"- {k}\n" for k in VOLUME_METRICS)
        + "\nNormalized KPIs:\n"
        + "".join(f"- {k}\n" for k in NORMALIZED_KPIS)
        + "\nReturn STRICT JSON only in this format:\n"
        f'{{\n  "interpretation": {{\n{shape}\n  }}\n}}'
    )


def build_request_body(kpis: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    return {
        "model": settings.GROQ_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": interpretation_prompt(kpis)},
        ],
        "temperature": settings.GROQ_TEMPERATURE,
        "max_tokens": settings.GROQ_MAX_TOKENS,
    }


def strip_code_fences(text: str) -> str:
    return _FENCE_JSON.sub("", text).replace("```", "").strip()


def first_completion_text(data: Any) -> Optional[str]:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(content, str):
        return None
    return content.strip() or None


def extract_bullets(text: str) -> List[str]:
    """
    Parse the model reply into interpretation sentences.

    Malformed replies give an empty list instead of an error; only string
    values under "interpretation" are kept, in the order the model sent them.
    """
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        logger.error("invalid_upstream_json", content=cleaned)
        return []

    interpretation = parsed.get("interpretation") if isinstance(parsed, dict) else None
    if not isinstance(interpretation, dict):
        return []
    return [v for v in interpretation.values() if isinstance(v, str)]


async def interpret_kpis(
    kpis: Dict[str, Any],
    settings: Settings,
    client: httpx.AsyncClient,
) -> List[str]:
    if not settings.GROQ_API_KEY:
        raise MissingApiKeyError("Groq API key not configured")

    try:
        res = await client.post(
            settings.GROQ_API_URL,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.GROQ_API_KEY}",
            },
            json=build_request_body(kpis, settings),
            timeout=settings.GROQ_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.error("groq_request_failed", error=repr(e))
        raise UpstreamError("Groq API failed") from e

    logger.info("groq_response", status=res.status_code)
    if not res.is_success:
        logger.error("groq_api_error", status=res.status_code, body=res.text)
        raise UpstreamError("Groq API failed")

    try:
        data = res.json()
    except ValueError:
        logger.error("invalid_upstream_json", content=res.text)
        return []

    text = first_completion_text(data)
    if not text:
        return []
    return extract_bullets(text)
