"""
Stage Classifier

Maps a pipeline stage to a reporting bucket from its display name.
Tenants name their own stages, so there is no explicit won/lost flag:
a stage counts as won or lost only when its name contains one of the
patterns below. A pipeline without a "won" stage reports zero sales.
"""

from enum import Enum
from typing import Dict, Iterable, Optional

from crm.models.pipeline import Stage


class StageBucket(str, Enum):
    WON = "won"
    LOST = "lost"
    IN_PROGRESS = "in_progress"


WON_PATTERNS = ("fechada", "fechado", "won", "closed")
LOST_PATTERNS = ("perdida", "lost")


def classify(name: Optional[str]) -> StageBucket:
    """Classify a stage name (case-insensitive substring match, won first)."""
    lowered = (name or "").lower()
    if any(pattern in lowered for pattern in WON_PATTERNS):
        return StageBucket.WON
    if any(pattern in lowered for pattern in LOST_PATTERNS):
        return StageBucket.LOST
    return StageBucket.IN_PROGRESS


class StageClassifier:
    """Resolves stage ids against a registry snapshot."""

    def __init__(self, stages: Iterable[Stage]):
        self._by_id: Dict[str, Stage] = {stage.id: stage for stage in stages}

    def stage_for(self, stage_id: Optional[str]) -> Optional[Stage]:
        return self._by_id.get(stage_id) if stage_id else None

    def bucket_for(self, stage_id: Optional[str]) -> StageBucket:
        # Deals pointing at an unknown stage are still open
        stage = self.stage_for(stage_id)
        return classify(stage.name) if stage else StageBucket.IN_PROGRESS
