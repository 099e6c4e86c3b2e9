"""
Type definitions for the Amplicon Workflow Router.

This module defines the core data structures shared by the router, the
executor and the notifier: stages, derived flags, plans, stage results
and the run summary.
"""

from typing import Callable, Dict, List, Mapping, Optional, Tuple, Any, Union
from dataclasses import dataclass, field
from pathlib import Path
from datetime import datetime
from enum import Enum


class StageKind(str, Enum):
    """How a stage produces its output channels."""

    COMMAND = "command"
    SOURCE = "source"
    PASSTHROUGH = "passthrough"


class StageStatus(str, Enum):
    """Execution status of a stage."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class DerivedFlags:
    """Stage switches computed once from a parameter set."""

    import_reads: bool = True
    run_fastqc: bool = True
    run_multiqc: bool = True
    run_denoising: bool = True
    run_taxonomy: bool = True
    filter_taxa: bool = True
    run_barplot: bool = True
    run_abundance_tables: bool = True
    run_diversity: bool = True
    run_rarefaction: bool = True
    run_ancom: bool = True
    reasons: Mapping[str, str] = field(default_factory=dict, compare=False)

    def enabled(self) -> List[str]:
        """Return the names of flags that are switched on."""
        return [name for name, value in self.as_dict().items() if value]

    def disabled(self) -> List[str]:
        """Return the names of flags that are switched off."""
        return [name for name, value in self.as_dict().items() if not value]

    def as_dict(self) -> Dict[str, bool]:
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if name != "reasons"
        }


@dataclass(frozen=True)
class Stage:
    """
    A named unit of externally delegated work.

    ``outputs`` maps each produced channel to a path template relative to
    the stage's publish directory. Source stages bind the rendered value
    template in ``sources`` (usually a parameter path); pass-through
    stages rebind the input channel named in ``passthrough`` under the
    output name. ``cpus`` of None means the run's ``max_cpus``.
    """

    name: str
    kind: StageKind = StageKind.COMMAND
    inputs: Tuple[str, ...] = ()
    optional_inputs: Tuple[str, ...] = ()
    outputs: Mapping[str, str] = field(default_factory=dict)
    command: Optional[str] = None
    enabled_when: Optional[Callable[[DerivedFlags], bool]] = field(
        default=None, compare=False, repr=False
    )
    branch: Optional[str] = None
    sources: Mapping[str, str] = field(default_factory=dict)
    passthrough: Mapping[str, str] = field(default_factory=dict)
    publish_dir: Optional[str] = None
    cpus: Optional[int] = 1
    memory: Optional[str] = None
    description: str = ""

    @property
    def produces(self) -> Tuple[str, ...]:
        return tuple(self.outputs) or tuple(self.sources) or tuple(self.passthrough)

    @property
    def consumes(self) -> Tuple[str, ...]:
        return self.inputs + self.optional_inputs

    def is_enabled(self, flags: DerivedFlags) -> bool:
        """Evaluate the stage's enable predicate."""
        if self.enabled_when is None:
            return True
        return bool(self.enabled_when(flags))


@dataclass(frozen=True)
class Plan:
    """Ordered execution plan produced by the router."""

    stages: Tuple[Stage, ...]
    flags: DerivedFlags
    branches: Mapping[str, str] = field(default_factory=dict)
    skipped: Tuple[str, ...] = ()
    producers: Mapping[str, str] = field(default_factory=dict)

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    def __contains__(self, name: object) -> bool:
        return name in self.stage_names

    def get(self, name: str) -> Optional[Stage]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def dependencies(self, stage: Stage) -> List[str]:
        """Return the names of stages that feed ``stage``, in plan order."""
        upstream = {
            self.producers[channel]
            for channel in stage.consumes
            if channel in self.producers
        }
        return [name for name in self.stage_names if name in upstream]


ChannelValue = Union[Path, str]


@dataclass
class StageResult:
    """Outcome of one stage execution."""

    stage: str
    status: StageStatus
    command: Optional[str] = None
    outputs: Dict[str, ChannelValue] = field(default_factory=dict)
    log_file: Optional[Path] = None
    returncode: Optional[int] = None
    execution_time: Optional[float] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (StageStatus.COMPLETED, StageStatus.DRY_RUN)


@dataclass
class RunSummary:
    """Key-value record of a run handed to the notification component."""

    run_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    outdir: Path
    executed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    disabled_reasons: Dict[str, str] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    dry_run: bool = False

    @property
    def duration(self) -> float:
        """Return run duration in seconds."""
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to dictionary."""
        return {
            "run_name": self.run_name,
            "success": self.success,
            "dry_run": self.dry_run,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "outdir": str(self.outdir),
            "executed": list(self.executed),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "disabled_reasons": dict(self.disabled_reasons),
            "parameters": dict(self.parameters),
            "error_message": self.error_message,
        }


ChannelTable = Dict[str, ChannelValue]
