"""
Pipeline orchestration.

Ties the router and the executor together for one run: build the plan,
check its inputs, execute it, then write the run summary and send the
notification whatever the outcome.
"""

from datetime import datetime
from typing import Optional

from ..config.parameters import PipelineParameters
from ..config.settings import Settings, get_settings
from ..core.types import Plan, RunSummary
from ..routing.planner import build_plan
from ..utils.logging import LoggerMixin, performance_monitor
from ..utils.validation import check_inputs
from .executor import PlanExecutor, StageCallback
from .notification import build_summary, send_notification, summary_path, write_summary


class AmpliconPipeline(LoggerMixin):
    """Run the amplicon workflow for one parameter set."""

    def __init__(
        self,
        params: PipelineParameters,
        settings: Optional[Settings] = None,
        dry_run: bool = False,
        max_workers: Optional[int] = None,
        on_stage_complete: Optional[StageCallback] = None,
    ):
        self.params = params
        self.settings = settings or get_settings()
        self.dry_run = dry_run
        self.executor = PlanExecutor(
            params,
            settings=self.settings,
            dry_run=dry_run,
            max_workers=max_workers,
            on_stage_complete=on_stage_complete,
        )
        self.plan: Optional[Plan] = None
        self.summary: Optional[RunSummary] = None

    @performance_monitor
    def run(self) -> RunSummary:
        """
        Plan and execute the workflow.

        The summary is written and the notification sent before any error
        propagates.

        Returns:
            Summary of the successful run

        Raises:
            AmpliconRouterError: Configuration, planning or tool failure
            Exception: Anything else, after the summary is written
        """
        start_time = datetime.now()
        error: Optional[Exception] = None
        try:
            self.plan = build_plan(self.params)
            check_inputs(self.plan, self.params)
            self.executor.execute(self.plan)
        except Exception as e:
            error = e
            self.log_error(e, "run")

        self.summary = build_summary(
            self.params,
            start_time,
            plan=self.plan,
            results=self.executor.results,
            error=error,
            dry_run=self.dry_run,
        )
        write_summary(self.summary, summary_path(self.params, self.settings))
        if not self.dry_run:
            send_notification(self.summary, self.params, self.settings)

        if error is not None:
            raise error
        self.logger.success(
            f"Run '{self.summary.run_name}' finished in {self.summary.duration:.1f}s"
        )
        return self.summary
