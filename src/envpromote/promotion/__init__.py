"""Environment promotion across the ordered sequence."""

from envpromote.promotion.orchestrator import PromotionOrchestrator, validate_request
from envpromote.promotion.report import build_report, write_run_report
from envpromote.promotion.types import (
    Action,
    CancelToken,
    PromotionRun,
    RunStatus,
    Stage,
    StageState,
)

__all__ = [
    "Action",
    "CancelToken",
    "PromotionOrchestrator",
    "PromotionRun",
    "RunStatus",
    "Stage",
    "StageState",
    "build_report",
    "validate_request",
    "write_run_report",
]
