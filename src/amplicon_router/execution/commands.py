"""
Command rendering.

Fills a stage's shell template with its channel values, output paths,
parameters and resource settings. Rendering is pure: nothing here touches
the filesystem apart from resolving existing source paths.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

from ..config.parameters import PipelineParameters
from ..core.exceptions import ConfigurationError, UnsatisfiedChannelError
from ..core.types import ChannelTable, ChannelValue, Stage, StageKind
from ..routing.catalog import command_options


@dataclass(frozen=True)
class TaskContext:
    """Resources and directories handed to one stage invocation."""

    cpus: int
    memory: str
    workdir: Path
    publish_dir: Path


def publish_dir(stage: Stage, params: PipelineParameters) -> Path:
    return (Path(params.outdir) / (stage.publish_dir or stage.name)).absolute()


def work_dir(stage: Stage, params: PipelineParameters) -> Path:
    return (Path(params.outdir) / "work" / stage.name).absolute()


def task_context(stage: Stage, params: PipelineParameters) -> TaskContext:
    """
    Resolve the stage's resource requests against the run limits.

    A stage asking for no fixed CPU count gets ``max_cpus``; fixed counts
    are capped by it. Memory is passed through as given, ``max`` and
    unset both meaning ``max_memory``.
    """
    if stage.cpus is None:
        cpus = params.max_cpus
    else:
        cpus = min(stage.cpus, params.max_cpus)

    if stage.memory in (None, "max"):
        memory = params.max_memory
    else:
        memory = stage.memory

    return TaskContext(
        cpus=cpus,
        memory=memory,
        workdir=work_dir(stage, params),
        publish_dir=publish_dir(stage, params),
    )


def output_paths(stage: Stage, params: PipelineParameters) -> Dict[str, Path]:
    """Return the absolute path of every channel a command stage produces."""
    base = publish_dir(stage, params)
    paths = {}
    for channel, relative in stage.outputs.items():
        paths[channel] = base if relative in ("", ".") else base / relative
    return paths


def _render(template: str, context: Mapping[str, Any], stage: Stage) -> str:
    try:
        return template.format_map(context)
    except (KeyError, AttributeError, IndexError) as e:
        raise ConfigurationError(
            f"Stage '{stage.name}' template refers to an unknown field: {e}",
            config_key=stage.name,
        ) from e


def bind_sources(stage: Stage, params: PipelineParameters) -> ChannelTable:
    """
    Bind the channels of a source stage.

    Values naming an existing file or directory are made absolute, since
    commands run inside their own work directory. Anything else (URLs,
    literal values) is bound as rendered.
    """
    bound: ChannelTable = {}
    for channel, template in stage.sources.items():
        value = _render(template, {"params": params}, stage)
        if value in ("", "None"):
            raise ConfigurationError(
                f"Stage '{stage.name}' has no value for channel '{channel}'",
                config_key=channel,
            )
        path = Path(value)
        bound[channel] = path.absolute() if path.exists() else value
    return bound


def bind_passthrough(stage: Stage, channels: Mapping[str, ChannelValue]) -> ChannelTable:
    """Rebind input channel values under the stage's output names."""
    bound: ChannelTable = {}
    for output, source in stage.passthrough.items():
        if source not in channels:
            raise UnsatisfiedChannelError(stage.name, source)
        bound[output] = channels[source]
    return bound


def stage_inputs(stage: Stage, channels: Mapping[str, ChannelValue]) -> Dict[str, str]:
    """
    Collect the values a stage consumes.

    Unbound optional inputs render as empty strings.
    """
    values = {}
    for channel in stage.inputs:
        if channel not in channels:
            raise UnsatisfiedChannelError(stage.name, channel)
        values[channel] = str(channels[channel])
    for channel in stage.optional_inputs:
        values[channel] = str(channels[channel]) if channel in channels else ""
    return values


def render_command(
    stage: Stage,
    params: PipelineParameters,
    channels: Mapping[str, ChannelValue],
) -> str:
    """
    Render a command stage's shell template.

    Args:
        stage: Command stage to render
        params: Validated parameter set
        channels: Values bound so far, keyed by channel name

    Returns:
        Shell script text

    Raises:
        UnsatisfiedChannelError: If a required input is not bound
        ConfigurationError: If the stage has no command or the template
            names an unknown field
    """
    if stage.kind is not StageKind.COMMAND or not stage.command:
        raise ConfigurationError(
            f"Stage '{stage.name}' has no command to render", config_key=stage.name
        )

    context = {
        "in": stage_inputs(stage, channels),
        "out": {name: str(path) for name, path in output_paths(stage, params).items()},
        "params": params,
        "opts": command_options(params),
        "task": task_context(stage, params),
    }
    return _render(stage.command, context, stage)
