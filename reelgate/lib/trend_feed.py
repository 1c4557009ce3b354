"""
Trend feed client - pulls raw trend records over HTTP.
"""

import logging
from typing import List

import httpx
from pydantic import ValidationError

from reelgate.models.schedule import RawTrend

logger = logging.getLogger(__name__)

FEED_TIMEOUT_SECONDS = 10.0


def parse_trends(body) -> List[RawTrend]:
    """Accepts a bare list or {"trends": [...]}; malformed records are skipped."""
    if isinstance(body, dict):
        body = body.get("trends", [])
    if not isinstance(body, list):
        logger.warning(f"Unexpected trend feed payload: {type(body).__name__}")
        return []

    trends = []
    for item in body:
        try:
            trends.append(RawTrend.model_validate(_normalize_keys(item)))
        except (ValidationError, AttributeError) as e:
            logger.warning(f"Skipping malformed trend record: {e}")
    return trends


def _normalize_keys(item: dict) -> dict:
    aliases = {"soundId": "sound_id", "nicheFit": "niche_fit", "updatedAt": "updated_at"}
    return {aliases.get(k, k): v for k, v in item.items()}


async def fetch_trends(url: str, timeout_seconds: float = FEED_TIMEOUT_SECONDS) -> List[RawTrend]:
    """Fetch the feed. Failures are logged and yield an empty list."""
    timeout = httpx.Timeout(timeout_seconds, connect=timeout_seconds)
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            body = response.json()
    except httpx.HTTPError as e:
        logger.error(f"Trend feed request failed: {e}")
        return []
    except ValueError as e:
        logger.error(f"Trend feed returned invalid JSON: {e}")
        return []

    return parse_trends(body)
