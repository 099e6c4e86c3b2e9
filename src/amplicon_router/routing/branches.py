"""
Branch resolution.

A branch is a set of mutually exclusive groups of stages producing the
same channel. Exactly one group is chosen from the parameter set; the
branch as a whole is active only when its consumers are enabled.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from ..config.parameters import PipelineParameters
from ..core.exceptions import ConfigurationError
from ..core.types import DerivedFlags, Stage
from .catalog import get_stage
from .flags import derive_flags


@dataclass(frozen=True)
class Branch:
    """Mutually exclusive upstream alternatives for one channel."""

    name: str
    output: str
    alternatives: Mapping[str, Tuple[str, ...]]
    choose: Callable[[PipelineParameters, DerivedFlags], str]
    active: Callable[[DerivedFlags], bool] = lambda flags: True
    requires: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    description: str = ""

    def stage_names(self, choice: str) -> Tuple[str, ...]:
        return self.alternatives[choice]

    def all_stage_names(self) -> List[str]:
        return [name for group in self.alternatives.values() for name in group]


BRANCHES: Dict[str, Branch] = {
    "reads": Branch(
        name="reads",
        output="demux",
        alternatives={
            "raw": ("raw_reads", "trimming", "qiime_import"),
            "imported": ("load_imported_artifact",),
        },
        choose=lambda p, f: "raw" if f.import_reads else "imported",
        requires={"raw": ("fw_primer", "rv_primer", "metadata")},
        description="import raw reads or load a pre-imported artifact",
    ),
    "truncation": Branch(
        name="truncation",
        output="trunc_lengths",
        alternatives={
            "auto": ("estimate_truncation",),
            "fixed": ("fixed_truncation",),
        },
        choose=lambda p, f: "fixed" if p.trunclenf is not None else "auto",
        active=lambda f: f.run_denoising,
        description="estimate truncation lengths or use the given ones",
    ),
    "classifier": Branch(
        name="classifier",
        output="classifier",
        alternatives={
            "train": ("reference_database", "train_classifier"),
            "load": ("load_classifier",),
        },
        choose=lambda p, f: "load" if p.classifier is not None else "train",
        active=lambda f: f.run_taxonomy,
        requires={"train": ("fw_primer", "rv_primer")},
        description="train a classifier or load the supplied one",
    ),
    "taxa_filter": Branch(
        name="taxa_filter",
        output="table",
        alternatives={
            "filter": ("filter_taxa",),
            "passthrough": ("unfiltered_passthrough",),
        },
        choose=lambda p, f: "filter" if f.filter_taxa else "passthrough",
        active=lambda f: f.run_denoising,
        description="filter taxa or forward the unfiltered table",
    ),
}


def get_branch(branch_name: str) -> Branch:
    try:
        return BRANCHES[branch_name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown branch '{branch_name}', expected one of: {', '.join(BRANCHES)}",
            config_key="branch",
            config_value=branch_name,
        ) from None


def resolve_choice(
    params: PipelineParameters,
    branch_name: str,
    flags: Optional[DerivedFlags] = None,
) -> str:
    """
    Return the alternative chosen for ``branch_name``.

    Raises:
        ConfigurationError: If the branch is unknown or the chosen
            alternative lacks a required parameter
    """
    branch = get_branch(branch_name)
    if flags is None:
        flags = derive_flags(params)

    choice = branch.choose(params, flags)
    missing = [
        key for key in branch.requires.get(choice, ())
        if getattr(params, key) is None
    ]
    if missing:
        raise ConfigurationError(
            f"Branch '{branch_name}' ({choice}) requires parameter(s): "
            f"{', '.join(missing)}",
            config_key=missing[0],
        )

    logger.debug(f"Branch '{branch_name}' resolved to '{choice}'")
    return choice


def select_branch(
    params: PipelineParameters,
    branch_name: str,
    flags: Optional[DerivedFlags] = None,
) -> Stage:
    """
    Resolve a mutually exclusive alternative.

    Args:
        params: Validated parameter set
        branch_name: One of ``reads``, ``truncation``, ``classifier``,
            ``taxa_filter``
        flags: Derived flags, computed from ``params`` when omitted

    Returns:
        The chosen stage producing the branch's output channel

    Raises:
        ConfigurationError: If the branch is unknown or the chosen
            alternative lacks a required parameter
    """
    branch = get_branch(branch_name)
    choice = resolve_choice(params, branch_name, flags)

    for name in branch.stage_names(choice):
        stage = get_stage(name)
        if branch.output in stage.produces:
            return stage
    raise ConfigurationError(
        f"Branch '{branch_name}' alternative '{choice}' produces no '{branch.output}' channel",
        config_key="branch",
        config_value=branch_name,
    )
