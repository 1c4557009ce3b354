"""
Runtime settings, read from environment variables once at startup.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional


def _split(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


@dataclass
class Settings:
    """Process-level configuration. Safety thresholds live in Policy."""
    store_backend: str = "memory"              # memory | postgres
    database_url: Optional[str] = None

    classifier_url: Optional[str] = None       # unset -> NullClassifier
    classifier_timeout_seconds: float = 10.0
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    transcode_timeout_seconds: float = 120.0
    work_dir: Optional[str] = None

    kafka_bootstrap_servers: Optional[str] = None   # unset -> LoggingPublisher
    ingest_from_kafka: bool = False

    profiles: List[str] = field(default_factory=lambda: ["MAIN"])
    tick_interval_seconds: float = 60.0
    slot_horizon_minutes: int = 180
    lock_ttl_seconds: float = 900.0
    max_draft_attempts: int = 3

    trend_feed_url: Optional[str] = None
    trend_refresh_minutes: float = 30.0
    ab_test_id: Optional[str] = None

    metrics_port: int = 8000
    dry_run: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            store_backend=os.getenv("STORE_BACKEND", "memory").lower(),
            database_url=os.getenv("DATABASE_URL") or None,
            classifier_url=os.getenv("CLASSIFIER_URL") or None,
            classifier_timeout_seconds=float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "10")),
            ffmpeg_bin=os.getenv("FFMPEG_BIN", "ffmpeg"),
            ffprobe_bin=os.getenv("FFPROBE_BIN", "ffprobe"),
            transcode_timeout_seconds=float(os.getenv("TRANSCODE_TIMEOUT_SECONDS", "120")),
            work_dir=os.getenv("REELGATE_WORK_DIR") or None,
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS") or None,
            ingest_from_kafka=os.getenv("INGEST_FROM_KAFKA", "false").lower() in ("1", "true", "yes"),
            profiles=_split(os.getenv("PROFILES", "MAIN")),
            tick_interval_seconds=float(os.getenv("TICK_INTERVAL_SECONDS", "60")),
            slot_horizon_minutes=int(os.getenv("SLOT_HORIZON_MINUTES", "180")),
            lock_ttl_seconds=float(os.getenv("LOCK_TTL_SECONDS", "900")),
            max_draft_attempts=int(os.getenv("MAX_DRAFT_ATTEMPTS", "3")),
            trend_feed_url=os.getenv("TREND_FEED_URL") or None,
            trend_refresh_minutes=float(os.getenv("TREND_REFRESH_MINUTES", "30")),
            ab_test_id=os.getenv("AB_TEST_ID") or None,
            metrics_port=int(os.getenv("METRICS_PORT", "8000")),
            dry_run=os.getenv("DRY_RUN", "false").lower() in ("1", "true", "yes"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
