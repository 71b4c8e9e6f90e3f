"""Progress reporting for a single pipeline run."""

import logging
from collections.abc import Callable
from typing import Any

from intake.pipeline.models import PipelineStage, PipelineStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineStatus], None]

MILESTONES: dict[PipelineStage, int] = {
    PipelineStage.UPLOAD: 10,
    PipelineStage.OCR: 30,
    PipelineStage.VALIDATION: 50,
    PipelineStage.SUPPLIER_MATCH: 70,
    PipelineStage.DUPLICATE_CHECK: 80,
    PipelineStage.IMPORT: 90,
    PipelineStage.COMPLETE: 100,
}
VALIDATION_FAILED_PROGRESS = 40


class ProgressTracker:
    """Emits ``PipelineStatus`` updates and keeps progress monotonic.

    A report below the last emitted value is raised to that value, so an
    observer never sees progress go backwards (the error status included).
    Observer failures are logged and ignored.
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self.callback = callback
        self.progress = 0
        self.stage: PipelineStage | None = None
        self.history: list[PipelineStatus] = []

    def report(
        self,
        stage: PipelineStage,
        message: str,
        progress: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> PipelineStatus:
        if progress is None:
            progress = self.progress if stage == PipelineStage.ERROR else MILESTONES[stage]
        self.progress = max(self.progress, progress)
        self.stage = stage
        status = PipelineStatus(stage=stage, progress=self.progress, message=message, details=details)
        self.history.append(status)
        logger.info(f"[{stage.value} {self.progress}%] {message}")
        if self.callback is not None:
            try:
                self.callback(status)
            except Exception as e:
                logger.warning(f"Progress observer failed: {e}")
        return status

    def fail(self, message: str, details: dict[str, Any] | None = None) -> PipelineStatus:
        return self.report(PipelineStage.ERROR, message, details=details)
