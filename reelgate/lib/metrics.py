"""
Prometheus metrics exporter
"""
import os
import logging
from prometheus_client import Counter, Histogram, start_http_server
from functools import wraps
import time

logger = logging.getLogger(__name__)

# Counters
safety_reports = Counter('reelgate_safety_reports_total', 'Safety reports produced', ['status'])
scan_passes = Counter('reelgate_scan_passes_total', 'Scan passes run', ['complete'])
frames_failed = Counter('reelgate_frames_failed_total', 'Frames skipped after classifier errors')
fix_stages = Counter('reelgate_fix_stages_total', 'Auto-fix stages applied', ['stage'])
duplicate_scans = Counter('reelgate_duplicate_scans_total', 'ensure_safe calls served without a new scan', ['path'])
admission_decisions = Counter('reelgate_admission_decisions_total', 'Admission checks', ['allowed'])
cycle_outcomes = Counter('reelgate_cycle_outcomes_total', 'Orchestrator cycle outcomes', ['profile', 'outcome'])

# Histograms (for latency)
scan_latency = Histogram('reelgate_scan_duration_seconds', 'Scan pass duration')
classifier_latency = Histogram('reelgate_classifier_duration_seconds', 'Per-frame classifier call duration')
stage_latency = Histogram('reelgate_stage_duration_seconds', 'Pipeline stage duration', ['stage'])


class MetricsExporter:
    """Prometheus metrics exporter"""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start(self):
        """Start Prometheus HTTP server"""
        if not self.server_started:
            start_http_server(self.port)
            self.server_started = True
            logger.info(f"Prometheus metrics server started on port {self.port}")

    @staticmethod
    def track_stage(stage: str):
        """Decorator to time an async pipeline stage"""
        def decorator(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                    stage_latency.labels(stage=stage).observe(time.time() - start_time)
                    return result
                except Exception:
                    stage_latency.labels(stage=f"{stage}_error").observe(time.time() - start_time)
                    raise
            return wrapper
        return decorator

    @staticmethod
    def record_report(status: str):
        safety_reports.labels(status=status).inc()

    @staticmethod
    def record_scan(complete: bool, duration: float, failed_frames: int):
        scan_passes.labels(complete=str(complete).lower()).inc()
        scan_latency.observe(duration)
        if failed_frames:
            frames_failed.inc(failed_frames)

    @staticmethod
    def record_classifier_call(duration: float):
        classifier_latency.observe(duration)

    @staticmethod
    def record_fix_stage(stage: str):
        fix_stages.labels(stage=stage).inc()

    @staticmethod
    def record_duplicate(path: str):
        """path: 'inflight' (same process), 'locked' (another worker, report cached) or 'lock-held' (deferred)"""
        duplicate_scans.labels(path=path).inc()

    @staticmethod
    def record_admission(allowed: bool):
        admission_decisions.labels(allowed=str(allowed).lower()).inc()

    @staticmethod
    def record_cycle(profile: str, outcome: str):
        cycle_outcomes.labels(profile=profile, outcome=outcome).inc()


# Singleton instance
metrics = MetricsExporter(port=int(os.getenv('METRICS_PORT', '8000')))
