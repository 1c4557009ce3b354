"""
Main pipeline runner - wires everything together and drives the tick loop
"""
import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from reelgate.lib.classifier import ImageClassifier, HttpImageClassifier, NullClassifier
from reelgate.lib.config import Settings
from reelgate.lib.kafka_client import MessageBroker, KafkaPublisher
from reelgate.lib.metrics import metrics
from reelgate.lib.publisher import Publisher, LoggingPublisher
from reelgate.lib.store import KeyValueStore, InMemoryStore
from reelgate.lib.transcoder import Transcoder, FFmpegTranscoder
from reelgate.models.enums import AssetSource
from reelgate.models.media import Asset
from reelgate.models.policy import Policy
from reelgate.services.ab_service import ABService
from reelgate.services.autofix_service import AutoFixService
from reelgate.services.caption_scanner import CaptionScanner
from reelgate.services.draft_queue import DraftQueue
from reelgate.services.orchestrator import Orchestrator, CycleResult
from reelgate.services.report_cache import ReportCache
from reelgate.services.rhythm_service import RhythmService
from reelgate.services.safety_service import SafetyService
from reelgate.services.scan_service import ScanService
from reelgate.services.trend_service import TrendService

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> KeyValueStore:
    if settings.store_backend == "postgres":
        from reelgate.lib.database import PostgresStore
        return PostgresStore(settings.database_url)
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {settings.store_backend}")
    return InMemoryStore()


class Pipeline:
    """End-to-end publish gate: safety, rhythm, trends and hand-off"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        policy: Optional[Policy] = None,
        store: Optional[KeyValueStore] = None,
        transcoder: Optional[Transcoder] = None,
        classifier: Optional[ImageClassifier] = None,
        publisher: Optional[Publisher] = None,
        broker: Optional[MessageBroker] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.policy = policy or Policy.from_env()
        self.store = store if store is not None else build_store(self.settings)

        self.transcoder = transcoder or FFmpegTranscoder(
            ffmpeg_bin=self.settings.ffmpeg_bin,
            ffprobe_bin=self.settings.ffprobe_bin,
            timeout_seconds=self.settings.transcode_timeout_seconds,
            work_dir=self.settings.work_dir,
        )
        if classifier is None:
            if self.settings.classifier_url:
                classifier = HttpImageClassifier(
                    self.settings.classifier_url, timeout_seconds=self.settings.classifier_timeout_seconds
                )
            else:
                logger.warning("CLASSIFIER_URL not set, frames will not be classified")
                classifier = NullClassifier()
        self.classifier = classifier

        self.broker = broker
        if publisher is None:
            if self.settings.kafka_bootstrap_servers and not self.settings.dry_run:
                self.broker = self.broker or MessageBroker(self.settings.kafka_bootstrap_servers)
                publisher = KafkaPublisher(self.broker)
            else:
                publisher = LoggingPublisher()
        self.publisher = publisher

        # Safety gate
        captions = CaptionScanner()
        scanner = ScanService(self.transcoder, self.classifier, self.policy, captions)
        autofix = AutoFixService(self.transcoder, self.policy, captions)
        self.safety = SafetyService(scanner, autofix, self.policy, captions)
        self.cache = ReportCache(self.store, self.safety, lock_ttl=self.settings.lock_ttl_seconds)

        # Scheduling
        self.rhythm = RhythmService(self.store)
        self.trends = TrendService(self.store, self.rhythm)
        self.ab = ABService(self.store)
        self.drafts = DraftQueue(self.store)

        self.orchestrator = Orchestrator(
            drafts=self.drafts,
            cache=self.cache,
            rhythm=self.rhythm,
            trends=self.trends,
            ab=self.ab,
            publisher=self.publisher,
            ab_test_id=self.settings.ab_test_id,
            slot_horizon_minutes=self.settings.slot_horizon_minutes,
            trend_feed_url=self.settings.trend_feed_url,
            trend_refresh_minutes=self.settings.trend_refresh_minutes,
            max_attempts=self.settings.max_draft_attempts,
        )

        self.rhythm.ensure_defaults()
        logger.info(f"Pipeline initialized (store={self.settings.store_backend}, profiles={self.settings.profiles})")

    def handle_ingest(self, message: Dict[str, Any]):
        """
        Queue an asset from an ingest message:
        {"profile", "asset_id", "path", "caption", "source", "priority"}
        """
        asset = Asset(
            id=str(message["asset_id"]),
            source_path=str(message["path"]),
            caption=str(message.get("caption") or ""),
            source=AssetSource(message.get("source") or AssetSource.LOCAL.value),
        )
        self.drafts.enqueue(str(message.get("profile") or "MAIN"), asset, int(message.get("priority") or 0))

    def tick(self) -> List[CycleResult]:
        """Run one scheduler tick for every configured profile"""
        start_time = time.time()
        results = asyncio.run(self._run_tick())
        summary = ", ".join(f"{r.profile}={r.outcome.value}" for r in results)
        logger.info(f"Tick finished in {time.time() - start_time:.2f}s: {summary}")
        return results

    async def _run_tick(self) -> List[CycleResult]:
        # HTTP clients are bound to this tick's event loop
        try:
            return await self.orchestrator.run_tick(self.settings.profiles)
        finally:
            aclose = getattr(self.classifier, "aclose", None)
            if aclose is not None:
                await aclose()

    def start(self):
        """Serve metrics and run ticks until interrupted"""
        metrics.start()

        if self.settings.ingest_from_kafka:
            self.broker = self.broker or MessageBroker(self.settings.kafka_bootstrap_servers)
            ingest_thread = threading.Thread(
                target=self.broker.consume_ingest_stream,
                args=(self.handle_ingest,),
                daemon=True
            )
            ingest_thread.start()
            logger.info("Ingest consumer started")

        logger.info(f"Ticking every {self.settings.tick_interval_seconds}s")
        try:
            while True:
                self.tick()
                time.sleep(self.settings.tick_interval_seconds)
        except KeyboardInterrupt:
            logger.info("Shutting down pipeline...")
        finally:
            self.close()

    def close(self):
        if self.broker is not None:
            self.broker.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    Pipeline(settings).start()


if __name__ == '__main__':
    main()
