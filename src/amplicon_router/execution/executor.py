"""
Plan execution.

Runs the stages of a plan through the configured shell. Independent
stages run concurrently on a thread pool; the scheduling loop in the
calling thread is the only writer of the channel table. The first failing
stage stops the run: running tools are terminated, pending stages are
cancelled and the tool error propagates.
"""

import os
import shutil
import signal
import subprocess
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config.parameters import PipelineParameters
from ..config.settings import Settings, get_settings
from ..core.exceptions import AmpliconRouterError, ExternalToolError, PlanError
from ..core.types import (
    ChannelTable,
    Plan,
    Stage,
    StageKind,
    StageResult,
    StageStatus,
)
from ..utils.logging import LoggerMixin
from .commands import (
    bind_passthrough,
    bind_sources,
    output_paths,
    render_command,
    task_context,
)


StageCallback = Callable[[StageResult], None]


def stage_log_path(params: PipelineParameters, stage: Stage) -> Path:
    return (Path(params.outdir) / "pipeline_info" / "logs" / f"{stage.name}.log").absolute()


def tail(text: str, lines: int) -> str:
    """Return the last ``lines`` lines of ``text``."""
    return "\n".join(text.rstrip().splitlines()[-lines:])


class PlanExecutor(LoggerMixin):
    """
    Execute a plan stage by stage.

    Results are collected in ``results`` in completion order and stay
    available after a failed run.
    """

    def __init__(
        self,
        params: PipelineParameters,
        settings: Optional[Settings] = None,
        dry_run: bool = False,
        max_workers: Optional[int] = None,
        on_stage_complete: Optional[StageCallback] = None,
    ):
        """
        Initialize executor.

        Args:
            params: Validated parameter set
            settings: Application settings, the cached settings by default
            dry_run: Render commands without running them
            max_workers: Concurrent stages, ``compute.max_workers`` by default
            on_stage_complete: Called in the scheduling thread for every
                finished, failed or cancelled stage
        """
        self.params = params
        self.settings = settings or get_settings()
        self.dry_run = dry_run
        self.max_workers = max_workers or self.settings.compute.max_workers
        self.on_stage_complete = on_stage_complete

        self.results: Dict[str, StageResult] = {}
        self.channels: ChannelTable = {}
        self._processes: Dict[str, subprocess.Popen] = {}
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    def execute(self, plan: Plan) -> List[StageResult]:
        """
        Execute every stage of ``plan``.

        Returns:
            Stage results in completion order

        Raises:
            ExternalToolError: For the first failing stage
            PlanError: If pending stages can never have their inputs bound
        """
        self.logger.info(
            f"Executing {len(plan)} stages with {self.max_workers} workers"
            + (" (dry run)" if self.dry_run else "")
        )
        pending: List[Stage] = list(plan.stages)
        running: Dict[Future, Stage] = {}
        failure: Optional[AmpliconRouterError] = None

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while pending or running:
                for stage in self._ready_stages(plan, pending):
                    pending.remove(stage)
                    future = pool.submit(self._run_stage, stage, dict(self.channels))
                    running[future] = stage

                if not running:
                    if pending:
                        raise PlanError(
                            "No stage can start, unbound inputs for: "
                            + ", ".join(stage.name for stage in pending)
                        )
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    stage = running.pop(future)
                    try:
                        result = future.result()
                    except AmpliconRouterError as e:
                        failure = e
                        log_file = getattr(e, "log_file", None)
                        self._record(StageResult(
                            stage=stage.name,
                            status=StageStatus.FAILED,
                            command=getattr(e, "command", None),
                            log_file=Path(log_file) if log_file else None,
                            returncode=getattr(e, "returncode", None),
                            error_message=e.message,
                        ))
                    except Exception as e:
                        self.logger.exception(f"Stage {stage.name} raised unexpectedly")
                        failure = ExternalToolError(
                            stage.name,
                            command=None,
                            stderr=f"{type(e).__name__}: {e}",
                            reason="aborted by an internal error",
                        )
                        self._record(StageResult(
                            stage=stage.name,
                            status=StageStatus.FAILED,
                            error_message=failure.message,
                        ))
                    else:
                        self.channels.update(result.outputs)
                        self._record(result)

                if failure is not None:
                    self._abort(pending, running)
                    break

        if failure is not None:
            self.logger.error(f"Run stopped: {failure.message.splitlines()[0]}")
            raise failure

        self.logger.success(f"Executed {len(self.results)} stages")
        return list(self.results.values())

    def _ready_stages(self, plan: Plan, pending: List[Stage]) -> List[Stage]:
        """
        Return pending stages whose inputs are bound, binding inline
        stages as they become ready so their consumers follow at once.
        """
        ready: List[Stage] = []
        progressed = True
        while progressed:
            progressed = False
            for stage in pending:
                if stage in ready or not self._inputs_bound(plan, stage):
                    continue
                if stage.kind is StageKind.COMMAND:
                    ready.append(stage)
                else:
                    pending.remove(stage)
                    self._bind_inline(stage)
                    progressed = True
                    break
        return ready

    def _inputs_bound(self, plan: Plan, stage: Stage) -> bool:
        if not all(channel in self.channels for channel in stage.inputs):
            return False
        # Optional inputs wait for their producer only if it is in the plan.
        return all(
            channel in self.channels or channel not in plan.producers
            for channel in stage.optional_inputs
        )

    def _bind_inline(self, stage: Stage) -> None:
        if stage.kind is StageKind.SOURCE:
            outputs = bind_sources(stage, self.params)
        else:
            outputs = bind_passthrough(stage, self.channels)
        self.channels.update(outputs)
        self.logger.debug(f"Bound {stage.name}: {outputs}")
        self._record(StageResult(
            stage=stage.name,
            status=StageStatus.COMPLETED,
            outputs=dict(outputs),
            execution_time=0.0,
        ))

    def _run_stage(self, stage: Stage, channels: ChannelTable) -> StageResult:
        """Render and run one command stage; called on a worker thread."""
        command = render_command(stage, self.params, channels)
        outputs = dict(output_paths(stage, self.params))

        if self.dry_run:
            self.logger.info(f"[dry run] {stage.name}")
            self.logger.debug(f"[dry run] {stage.name} command:\n{command}")
            return StageResult(
                stage=stage.name,
                status=StageStatus.DRY_RUN,
                command=command,
                outputs=outputs,
            )

        task = task_context(stage, self.params)
        log_file = stage_log_path(self.params, stage)
        for directory in (task.workdir, task.publish_dir, log_file.parent):
            directory.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Starting stage {stage.name}")
        start_time = time.time()
        with open(log_file, "w", encoding="utf-8") as log:
            log.write(f"# stage: {stage.name}\n# workdir: {task.workdir}\n{command}\n")
            log.flush()
            with self._lock:
                # No tool is started once the run is being aborted.
                if self._cancelled.is_set():
                    return StageResult(
                        stage=stage.name, status=StageStatus.CANCELLED, command=command
                    )
                try:
                    process = subprocess.Popen(
                        [self.settings.compute.shell, "-c", "set -e\n" + command],
                        cwd=task.workdir,
                        stdout=log,
                        stderr=subprocess.PIPE,
                        # Tools may emit arbitrary bytes on stderr.
                        encoding="utf-8",
                        errors="replace",
                        start_new_session=True,
                    )
                except OSError as e:
                    raise ExternalToolError(
                        stage.name, command, stderr=str(e), log_file=str(log_file)
                    ) from e
                self._processes[stage.name] = process
            try:
                _, stderr = process.communicate()
            finally:
                with self._lock:
                    self._processes.pop(stage.name, None)
            log.write(stderr)

        execution_time = time.time() - start_time
        if process.returncode != 0:
            raise ExternalToolError(
                stage.name,
                command,
                returncode=process.returncode,
                stderr=tail(stderr, self.settings.compute.stderr_tail_lines),
                log_file=str(log_file),
            )

        if not self.params.keep_intermediates:
            shutil.rmtree(task.workdir, ignore_errors=True)

        self.logger.info(f"Completed stage {stage.name} in {execution_time:.1f}s")
        return StageResult(
            stage=stage.name,
            status=StageStatus.COMPLETED,
            command=command,
            outputs=outputs,
            log_file=log_file,
            returncode=0,
            execution_time=execution_time,
        )

    def _abort(self, pending: List[Stage], running: Dict[Future, Stage]) -> None:
        """Terminate running tools and cancel every stage not yet finished."""
        with self._lock:
            self._cancelled.set()
        self._signal_running(signal.SIGTERM)

        for future in running:
            future.cancel()
        _, not_done = wait(running, timeout=self.settings.compute.kill_timeout)
        if not_done:
            self._signal_running(signal.SIGKILL)
            wait(not_done)
        for future, stage in running.items():
            # A stage may still have finished cleanly before termination.
            if not future.cancelled() and future.exception() is None:
                self._record(future.result())
            else:
                self._record(StageResult(stage=stage.name, status=StageStatus.CANCELLED))
        running.clear()

        for stage in pending:
            self._record(StageResult(stage=stage.name, status=StageStatus.CANCELLED))
        pending.clear()

    def _signal_running(self, sig: signal.Signals) -> None:
        with self._lock:
            processes = list(self._processes.items())
        for name, process in processes:
            self.logger.warning(f"Sending {sig.name} to stage {name}")
            # Tools run in their own session; signal the whole group.
            try:
                os.killpg(process.pid, sig)
            except ProcessLookupError:
                self.logger.debug(f"Stage {name} had already exited")

    def _record(self, result: StageResult) -> None:
        self.results[result.stage] = result
        if self.on_stage_complete is not None:
            self.on_stage_complete(result)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def executed(self) -> List[str]:
        """Return names of stages that completed, in completion order."""
        return [name for name, result in self.results.items() if result.success]

    def failed(self) -> List[str]:
        return [
            name for name, result in self.results.items()
            if result.status is StageStatus.FAILED
        ]
