"""Stage execution, run summaries and notification."""

from .executor import PlanExecutor
from .pipeline import AmpliconPipeline

__all__ = ["AmpliconPipeline", "PlanExecutor"]
