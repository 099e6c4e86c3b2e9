"""
Execution plan builder.

Turns a parameter set into an ordered sequence of stages: flags are
derived once, branches are resolved, the enabled stages are checked for
producer/consumer balance and ordered topologically with catalog order
as the tie breaker.
"""

import heapq
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..config.parameters import PipelineParameters
from ..core.exceptions import (
    ChannelConflictError,
    PlanCycleError,
    UnsatisfiedChannelError,
)
from ..core.types import DerivedFlags, Plan, Stage
from .branches import BRANCHES, resolve_choice
from .catalog import STAGES
from .flags import derive_flags


def enabled_stages(
    params: PipelineParameters,
    flags: DerivedFlags,
    catalog: Sequence[Stage] = STAGES,
) -> Tuple[List[Stage], Dict[str, str]]:
    """
    Collect the stages switched on for this run.

    Only active branches are resolved; an inactive branch contributes no
    stages and its required parameters are not checked.

    Returns:
        Enabled stages in catalog order and the choice made per active branch
    """
    chosen: Dict[str, Tuple[str, ...]] = {}
    branches: Dict[str, str] = {}
    for name, branch in BRANCHES.items():
        if not branch.active(flags):
            chosen[name] = ()
            continue
        choice = resolve_choice(params, name, flags)
        chosen[name] = branch.stage_names(choice)
        branches[name] = choice

    stages = []
    for stage in catalog:
        if stage.branch is not None:
            included = stage.name in chosen.get(stage.branch, ())
            # Stages inside a chosen group still honour their own predicate.
            included = included and stage.is_enabled(flags)
        else:
            included = stage.is_enabled(flags)
        if included:
            stages.append(stage)
    return stages, branches


def map_producers(stages: Sequence[Stage]) -> Dict[str, str]:
    """
    Map every channel to its single producing stage.

    Raises:
        ChannelConflictError: If a channel has more than one producer
    """
    producers: Dict[str, List[str]] = {}
    for stage in stages:
        for channel in stage.produces:
            producers.setdefault(channel, []).append(stage.name)

    for channel, names in producers.items():
        if len(names) > 1:
            raise ChannelConflictError(channel, names)
    return {channel: names[0] for channel, names in producers.items()}


def check_channels(stages: Sequence[Stage], producers: Dict[str, str]) -> None:
    """
    Verify every required input channel has an enabled producer.

    Raises:
        UnsatisfiedChannelError: For the first stage, in order, with a
            dangling input
    """
    for stage in stages:
        for channel in stage.inputs:
            if channel not in producers:
                raise UnsatisfiedChannelError(stage.name, channel)


def order_stages(stages: Sequence[Stage], producers: Dict[str, str]) -> List[Stage]:
    """
    Topologically order stages by channel dependency.

    Among stages whose inputs are ready, the one listed first in
    ``stages`` is scheduled first, which makes the order deterministic.

    Raises:
        PlanCycleError: If dependencies are cyclic
    """
    position = {stage.name: index for index, stage in enumerate(stages)}
    by_name = {stage.name: stage for stage in stages}

    upstream: Dict[str, set] = {}
    downstream: Dict[str, List[str]] = {stage.name: [] for stage in stages}
    for stage in stages:
        deps = {producers[c] for c in stage.consumes if c in producers}
        deps.discard(stage.name)
        upstream[stage.name] = deps
        for dep in deps:
            downstream[dep].append(stage.name)

    ready = [position[name] for name, deps in upstream.items() if not deps]
    heapq.heapify(ready)
    ordered: List[Stage] = []
    while ready:
        stage = stages[heapq.heappop(ready)]
        ordered.append(stage)
        for child in downstream[stage.name]:
            upstream[child].discard(stage.name)
            if not upstream[child]:
                heapq.heappush(ready, position[child])

    if len(ordered) != len(stages):
        remaining = sorted(
            (name for name in by_name if name not in {s.name for s in ordered}),
            key=position.__getitem__,
        )
        raise PlanCycleError(remaining)
    return ordered


def build_plan(
    params: PipelineParameters,
    catalog: Optional[Sequence[Stage]] = None,
) -> Plan:
    """
    Build the ordered execution plan for a parameter set.

    Args:
        params: Validated parameter set
        catalog: Stage catalog, the amplicon workflow by default

    Returns:
        Plan whose stages satisfy every channel dependency in order

    Raises:
        ConfigurationError: Missing or conflicting parameters
        UnsatisfiedChannelError: An enabled stage lacks a producer
        ChannelConflictError: A channel has several enabled producers
        PlanCycleError: Stage dependencies are cyclic
    """
    catalog = STAGES if catalog is None else catalog
    flags = derive_flags(params)
    stages, branches = enabled_stages(params, flags, catalog)

    producers = map_producers(stages)
    check_channels(stages, producers)
    ordered = order_stages(stages, producers)

    included = {stage.name for stage in ordered}
    skipped = tuple(stage.name for stage in catalog if stage.name not in included)

    logger.info(
        f"Built plan with {len(ordered)} stages "
        f"({len(skipped)} skipped, branches: {branches})"
    )
    return Plan(
        stages=tuple(ordered),
        flags=flags,
        branches=branches,
        skipped=skipped,
        producers=producers,
    )
