"""FastAPI backend exposing read-only views of the publish gate.

- GET /health
- GET /reports/{asset_id}
- GET /admission/{profile}
- GET /slots/{profile}
- GET /trends/{profile}
- GET /drafts/{profile}
- GET /ab/{test_id}

Everything is read from the same KV store the tick runner writes to.
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query

from reelgate import __version__
from reelgate.lib.clock import utc_now, as_utc
from reelgate.models.enums import DraftStatus
from reelgate.run_pipeline import Pipeline


app = FastAPI(title="Reelgate API", version=__version__)


@lru_cache(maxsize=1)
def get_pipeline() -> Pipeline:
    return Pipeline()


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/reports/{asset_id}")
def report(asset_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    cached = pipeline.cache.cached_report(asset_id)
    if cached is None:
        raise HTTPException(status_code=404, detail=f"No report for {asset_id}")
    return cached.model_dump(mode="json")


@app.get("/admission/{profile}")
def admission(
    profile: str,
    at: Optional[datetime] = None,
    pipeline: Pipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Quota decision and slot weight for a point in time (default: now)."""
    when = as_utc(at) if at else utc_now()
    decision = pipeline.rhythm.check_admission(when, profile)
    return {
        "profile": profile,
        "at": when.isoformat(),
        "slotScore": pipeline.rhythm.score_time_slot(when, profile),
        **decision.model_dump(mode="json"),
    }


@app.get("/slots/{profile}")
def next_slot(
    profile: str,
    horizon: int = Query(default=180, ge=5, le=24 * 60),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    now = utc_now()
    slot = pipeline.rhythm.next_admissible_slot(profile, now, horizon_min=horizon)
    return {
        "profile": profile,
        "slot": slot.isoformat() if slot else None,
        "slotScore": pipeline.rhythm.score_time_slot(slot, profile) if slot else 0.0,
    }


@app.get("/trends/{profile}")
def trends(
    profile: str,
    limit: int = Query(default=3, ge=1, le=50),
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[Dict[str, Any]]:
    return [o.model_dump(mode="json") for o in pipeline.trends.next_opportunities(profile, limit=limit)]


@app.get("/drafts/{profile}")
def drafts(
    profile: str,
    status: Optional[DraftStatus] = None,
    pipeline: Pipeline = Depends(get_pipeline),
) -> List[Dict[str, Any]]:
    return [d.model_dump(mode="json") for d in pipeline.drafts.items(profile, status)]


@app.get("/ab/{test_id}")
def ab_test(test_id: str, pipeline: Pipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    test = pipeline.ab.get(test_id)
    if test is None:
        raise HTTPException(status_code=404, detail=f"Unknown A/B test {test_id}")
    return test.model_dump(mode="json")
