"""
Amplicon Workflow Router
========================

Plans and runs amplicon sequencing analyses: derives which stages of the
workflow are enabled from a parameter set, resolves the mutually
exclusive alternatives, orders the stages by their data dependencies and
delegates each stage to external bioinformatics tools.

Modules:
    config: Parameter schema and application settings
    routing: Flag derivation, branch selection and plan building
    execution: Command rendering, plan execution and notification
    cli: Command-line interface
    utils: Logging and input validation

Example:
    >>> from amplicon_router import PipelineParameters, build_plan
    >>> params = PipelineParameters(
    ...     fw_primer="GTGCCAGCMGCCGCGGTAA",
    ...     rv_primer="GGACTACHVGGGTWTCTAAT",
    ...     metadata="metadata.tsv",
    ... )
    >>> plan = build_plan(params)
    >>> plan.stage_names[:3]
    ['software_versions', 'raw_reads', 'fastqc']
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("amplicon-workflow-router")
except PackageNotFoundError:
    __version__ = "unknown"

from .config.parameters import PipelineParameters
from .core.exceptions import (
    AmpliconRouterError,
    ChannelConflictError,
    ConfigurationError,
    ExternalToolError,
    PlanCycleError,
    UnsatisfiedChannelError,
)
from .core.types import DerivedFlags, Plan, RunSummary, Stage
from .routing.branches import select_branch
from .routing.flags import derive_flags
from .routing.planner import build_plan

__all__ = [
    "__version__",
    "PipelineParameters",
    "DerivedFlags",
    "Plan",
    "RunSummary",
    "Stage",
    "derive_flags",
    "select_branch",
    "build_plan",
    "AmpliconRouterError",
    "ConfigurationError",
    "UnsatisfiedChannelError",
    "ChannelConflictError",
    "PlanCycleError",
    "ExternalToolError",
]
