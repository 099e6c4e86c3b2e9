"""
Routing: flag derivation, branch selection and plan building.
"""

from .branches import BRANCHES, resolve_choice, select_branch
from .catalog import STAGES, get_stage
from .flags import PRECEDENCE_TABLE, derive_flags
from .planner import build_plan

__all__ = [
    "BRANCHES",
    "PRECEDENCE_TABLE",
    "STAGES",
    "build_plan",
    "derive_flags",
    "get_stage",
    "resolve_choice",
    "select_branch",
]
