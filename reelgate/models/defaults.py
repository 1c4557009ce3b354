"""
Default rhythm configuration per publishing profile.
Seeded into the store on first run; the stored copy wins afterwards.
"""

from typing import Dict, List

from reelgate.models.schedule import Quota, AudienceWindow, QuietHours, MinuteWindow


def _hm(hours: int, minutes: int = 0) -> int:
    return hours * 60 + minutes


DEFAULT_QUOTAS: Dict[str, Quota] = {
    "MAIN": Quota(day_cap=26, hour_cap=3, gap_min=18),
    "WILLOW": Quota(day_cap=10, hour_cap=2, gap_min=20),
    "MAGGIE": Quota(day_cap=10, hour_cap=2, gap_min=20),
    "MARS": Quota(day_cap=10, hour_cap=2, gap_min=20),
}

DEFAULT_AUDIENCE_WINDOWS: Dict[str, List[AudienceWindow]] = {
    "MAIN": [
        AudienceWindow(start_min=_hm(7, 10), end_min=_hm(9, 20), weight=1.15),
        AudienceWindow(start_min=_hm(12), end_min=_hm(14), weight=1.2),
        AudienceWindow(start_min=_hm(18, 30), end_min=_hm(22, 30), weight=1.3),
    ],
    "WILLOW": [
        AudienceWindow(start_min=_hm(8), end_min=_hm(10), weight=1.1),
        AudienceWindow(start_min=_hm(17), end_min=_hm(21), weight=1.2),
    ],
    "MAGGIE": [
        AudienceWindow(start_min=_hm(9), end_min=_hm(11, 30), weight=1.1),
        AudienceWindow(start_min=_hm(19), end_min=_hm(22), weight=1.2),
    ],
    "MARS": [
        AudienceWindow(start_min=_hm(7, 30), end_min=_hm(9), weight=1.05),
        AudienceWindow(start_min=_hm(20), end_min=_hm(23), weight=1.25),
    ],
}

DEFAULT_QUIET_HOURS = QuietHours(
    time_zone="America/Los_Angeles",
    windows=[MinuteWindow(start_min=_hm(1), end_min=_hm(6))],
    soft=True,
)
