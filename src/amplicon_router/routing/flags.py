"""
Flag derivation.

All stage switches are computed in one pass over a single ordered
precedence table. Every rule only ever forces flags off, so the outcome
does not depend on evaluation order; the order decides which rule is
reported as the reason a flag is off, and lets cascade rules (which read
flags already derived) see the effect of earlier rules.
"""

from dataclasses import dataclass, fields
from typing import Callable, Dict, List, Tuple

from loguru import logger

from ..config.parameters import PipelineParameters
from ..core.types import DerivedFlags


FlagState = Dict[str, bool]


@dataclass(frozen=True)
class FlagRule:
    """One row of the precedence table."""

    name: str
    applies: Callable[[PipelineParameters, FlagState], bool]
    disables: Tuple[str, ...]
    description: str = ""


DOWNSTREAM_OF_DENOISING = (
    "run_taxonomy",
    "filter_taxa",
    "run_barplot",
    "run_abundance_tables",
    "run_diversity",
    "run_rarefaction",
    "run_ancom",
)


PRECEDENCE_TABLE: Tuple[FlagRule, ...] = (
    FlagRule(
        name="pre_imported_artifact",
        applies=lambda p, f: p.q2_imported is not None,
        disables=("import_reads", "run_fastqc", "run_multiqc"),
        description="a pre-imported QIIME2 artifact replaces raw read processing",
    ),
    FlagRule(
        name="until_q2_import",
        applies=lambda p, f: p.until_q2_import,
        disables=("run_denoising",) + DOWNSTREAM_OF_DENOISING,
        description="the run stops after importing reads",
    ),
    FlagRule(
        name="only_denoising",
        applies=lambda p, f: p.only_denoising,
        disables=DOWNSTREAM_OF_DENOISING,
        description="the run stops after denoising",
    ),
    FlagRule("skip_fastqc", lambda p, f: p.skip_fastqc, ("run_fastqc",)),
    FlagRule("skip_multiqc", lambda p, f: p.skip_multiqc, ("run_multiqc",)),
    FlagRule("skip_taxonomy", lambda p, f: p.skip_taxonomy, ("run_taxonomy",)),
    FlagRule("skip_barplot", lambda p, f: p.skip_barplot, ("run_barplot",)),
    FlagRule(
        "skip_abundance_tables",
        lambda p, f: p.skip_abundance_tables,
        ("run_abundance_tables",),
    ),
    FlagRule(
        "skip_alpha_rarefaction",
        lambda p, f: p.skip_alpha_rarefaction,
        ("run_rarefaction",),
    ),
    FlagRule(
        "skip_diversity_indices",
        lambda p, f: p.skip_diversity_indices,
        ("run_diversity",),
    ),
    FlagRule("skip_ancom", lambda p, f: p.skip_ancom, ("run_ancom",)),
    FlagRule(
        name="exclude_taxa_none",
        applies=lambda p, f: not p.taxa_to_exclude,
        disables=("filter_taxa",),
        description="exclude_taxa is 'none'",
    ),
    # Cascades below read flags set by the rules above.
    FlagRule(
        name="denoising_disabled",
        applies=lambda p, f: not f["run_denoising"],
        disables=DOWNSTREAM_OF_DENOISING,
        description="stages downstream of denoising have no input",
    ),
    FlagRule(
        name="taxonomy_disabled",
        applies=lambda p, f: not f["run_taxonomy"],
        disables=("filter_taxa", "run_barplot", "run_abundance_tables", "run_ancom"),
        description="stages consuming the taxonomy channel have no input",
    ),
    FlagRule(
        name="no_metadata",
        applies=lambda p, f: p.metadata is None,
        disables=("run_barplot", "run_diversity", "run_rarefaction", "run_ancom"),
        description="stages consuming the metadata channel have no input",
    ),
)


def flag_names() -> List[str]:
    return [f.name for f in fields(DerivedFlags) if f.name != "reasons"]


def derive_flags(
    params: PipelineParameters,
    table: Tuple[FlagRule, ...] = PRECEDENCE_TABLE,
) -> DerivedFlags:
    """
    Derive stage switches from a parameter set.

    Args:
        params: Validated parameter set
        table: Ordered precedence table, evaluated exactly once

    Returns:
        Immutable DerivedFlags with the first disabling rule per flag
        recorded in ``reasons``
    """
    names = flag_names()
    state: FlagState = {name: True for name in names}
    reasons: Dict[str, str] = {}

    for rule in table:
        if not rule.applies(params, dict(state)):
            continue
        for flag in rule.disables:
            if flag not in state:
                raise KeyError(f"Rule '{rule.name}' names unknown flag '{flag}'")
            if state[flag]:
                state[flag] = False
                reasons[flag] = rule.name
        logger.debug(f"Flag rule '{rule.name}' applied, disables {list(rule.disables)}")

    return DerivedFlags(reasons=reasons, **state)


def describe_rule(name: str) -> str:
    """Return the human-readable description of a precedence rule."""
    for rule in PRECEDENCE_TABLE:
        if rule.name == name:
            return rule.description or f"parameter {rule.name} is set"
    return name
