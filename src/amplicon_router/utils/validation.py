"""
Input validation for pipeline runs.

Checks that every input named by the parameters exists before any stage
is started, so a missing file is reported as a configuration problem
rather than as a tool failure halfway through a run.
"""

import glob
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..config.parameters import PipelineParameters
from ..core.exceptions import ConfigurationError
from ..core.types import Plan


# Plan stage -> parameter holding the file it reads
INPUT_FILES = {
    "raw_reads": "reads",
    "load_imported_artifact": "q2_imported",
    "load_classifier": "classifier",
    "metadata": "metadata",
    "reference_database": "reference_database",
    "multiqc": "multiqc_config",
}


@dataclass
class ValidationResult:
    """Result of validation operation."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    field_name: Optional[str] = None

    def add_error(self, message: str, field_name: Optional[str] = None) -> None:
        self.errors.append(message)
        self.is_valid = False
        if self.field_name is None:
            self.field_name = field_name


def is_url(value: str) -> bool:
    return "://" in value


def expand_read_pattern(pattern: str) -> List[str]:
    """Expand a read glob, including the ``{1,2}`` mate alternation."""
    if "{" in pattern and "}" in pattern:
        head, rest = pattern.split("{", 1)
        choices, tail = rest.split("}", 1)
        matches: List[str] = []
        for choice in choices.split(","):
            matches.extend(glob.glob(head + choice + tail))
        return sorted(set(matches))
    return sorted(glob.glob(pattern))


def validate_inputs(plan: Plan, params: PipelineParameters) -> ValidationResult:
    """
    Check the inputs read by the stages of ``plan``.

    Args:
        plan: Execution plan
        params: Validated parameter set

    Returns:
        ValidationResult listing every missing input
    """
    result = ValidationResult()
    for stage_name, key in INPUT_FILES.items():
        if stage_name not in plan:
            continue
        value = getattr(params, key)
        if value is None:
            continue
        if isinstance(value, str) and is_url(value):
            continue
        if not Path(value).exists():
            result.add_error(f"{key}: file not found: {value}", field_name=key)

    if "raw_reads" in plan and Path(params.reads).is_dir():
        if not expand_read_pattern(params.reads_pattern):
            result.add_error(
                f"reads: no files match {params.reads_pattern}", field_name="reads"
            )

    if not result.is_valid:
        logger.error(f"Input check failed with {len(result.errors)} problem(s)")
    return result


def check_inputs(plan: Plan, params: PipelineParameters) -> None:
    """
    Raise if any input of ``plan`` is missing.

    Raises:
        ConfigurationError: Listing every missing input
    """
    result = validate_inputs(plan, params)
    if not result.is_valid:
        raise ConfigurationError(
            "Missing input files: " + "; ".join(result.errors),
            config_key=result.field_name,
        )
