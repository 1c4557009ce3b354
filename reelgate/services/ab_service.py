"""
A/B Variant Picker - two-arm assignment and outcome recording.
"""

import logging
import random
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from reelgate.lib.store import KeyValueStore, keys, get_json, update_json
from reelgate.models.enums import Variant
from reelgate.models.schedule import ABTest, VariantPick

logger = logging.getLogger(__name__)


class ABService:
    """
    Uniform 50/50 assignment per call. Assignments are not persisted; the
    caller records outcomes against the arm it was given.
    """

    def __init__(self, store: KeyValueStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    def register(self, test: ABTest) -> None:
        """Create a test, or update its arms while keeping recorded results."""
        def _merge(current):
            results = current.get("results", {}) if current else {}
            merged = test.model_dump(mode="json")
            for variant, records in results.items():
                merged["results"].setdefault(variant, [])
                merged["results"][variant] = records + merged["results"][variant]
            return merged, None

        update_json(self.store, keys.ab_test(test.id), None, _merge)

    def get(self, test_id: str) -> Optional[ABTest]:
        raw = get_json(self.store, keys.ab_test(test_id))
        if raw is None:
            return None
        try:
            return ABTest.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed A/B test {test_id}: {e}")
            return None

    def pick_variant(self, test_id: str) -> Optional[VariantPick]:
        test = self.get(test_id)
        if test is None:
            return None
        variant = Variant.A if self.rng.random() < 0.5 else Variant.B
        return VariantPick(test_id=test_id, variant=variant, value=test.value_for(variant))

    def record_outcome(self, test_id: str, variant: Variant, outcome: Dict[str, Any]) -> bool:
        """Append an outcome under the arm. False when the test is unknown."""
        variant = Variant(variant)

        def _append(current):
            if current is None:
                return None, False
            results = current.setdefault("results", {})
            results.setdefault(variant.value, []).append(outcome)
            return current, True

        recorded = update_json(self.store, keys.ab_test(test_id), None, _append)
        if not recorded:
            logger.warning(f"Outcome for unknown A/B test {test_id} dropped")
        return recorded

    def results(self, test_id: str) -> Dict[Variant, List[Dict[str, Any]]]:
        test = self.get(test_id)
        return dict(test.results) if test else {}

