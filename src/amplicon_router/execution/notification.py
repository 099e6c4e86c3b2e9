"""
Run summary and completion notification.

After every run, successful or not, a summary record is written to the
output directory and, when an address is configured, mailed through the
local sendmail binary. A delivery problem never fails the run.
"""

import json
import subprocess
from datetime import datetime
from email.message import EmailMessage
from html import escape
from pathlib import Path
from string import Template
from typing import Dict, Iterable, Optional

from loguru import logger

from ..config.parameters import PipelineParameters
from ..config.settings import Settings, get_settings
from ..core.types import Plan, RunSummary, StageResult, StageStatus
from ..routing.flags import describe_rule


TEXT_TEMPLATE = Template("""\
========================================
 amplicon-router v${version}
========================================
Run Name: ${run_name}

${status_line}

The workflow was completed at ${end_time} (duration: ${duration})

Output directory: ${outdir}

Executed stages:
${executed}

Skipped stages:
${skipped}

Disabled analyses:
${disabled}

Pipeline parameters:
${parameters}
${error_block}""")

HTML_TEMPLATE = Template("""\
<html>
<head><meta charset="utf-8"><title>amplicon-router: ${run_name}</title></head>
<body style="font-family: Helvetica, Arial, sans-serif; padding: 30px; max-width: 800px; margin: 0 auto;">
<h1>amplicon-router v${version}</h1>
<h2>Run Name: ${run_name}</h2>
<div style="color: ${colour}; border: 1px solid ${colour}; padding: 15px; margin-bottom: 20px;">
<p>${status_line}</p>
${error_block}
</div>
<p>The workflow was completed at <strong>${end_time}</strong> (duration: <strong>${duration}</strong>).</p>
<p>Output directory: <code>${outdir}</code></p>
<h3>Executed stages</h3>
<ul>${executed}</ul>
<h3>Disabled analyses</h3>
<ul>${disabled}</ul>
<h3>Pipeline parameters</h3>
<table style="width:100%; border-collapse: collapse;">${parameters}</table>
</body>
</html>
""")


def default_run_name(start_time: datetime) -> str:
    return f"run_{start_time:%Y%m%d_%H%M%S}"


def build_summary(
    params: PipelineParameters,
    start_time: datetime,
    end_time: Optional[datetime] = None,
    plan: Optional[Plan] = None,
    results: Optional[Dict[str, StageResult]] = None,
    error: Optional[Exception] = None,
    dry_run: bool = False,
) -> RunSummary:
    """
    Build the record of a finished run.

    ``plan`` and ``results`` may be missing when the run failed before a
    plan existed or before execution started.
    """
    results = results or {}
    executed = [name for name, result in results.items() if result.success]
    failed = [
        name for name, result in results.items()
        if result.status is StageStatus.FAILED
    ]
    skipped = list(plan.skipped) if plan is not None else []
    reasons = {
        flag: describe_rule(rule)
        for flag, rule in (plan.flags.reasons.items() if plan is not None else ())
    }

    return RunSummary(
        run_name=params.run_name or default_run_name(start_time),
        success=error is None,
        start_time=start_time,
        end_time=end_time or datetime.now(),
        outdir=Path(params.outdir).absolute(),
        executed=executed,
        failed=failed,
        skipped=skipped,
        disabled_reasons=reasons,
        parameters=params.non_default(),
        error_message=str(error) if error is not None else None,
        dry_run=dry_run,
    )


def summary_path(params: PipelineParameters, settings: Optional[Settings] = None) -> Path:
    settings = settings or get_settings()
    return Path(params.outdir) / "pipeline_info" / settings.notification.summary_filename


def write_summary(summary: RunSummary, path: Path) -> Path:
    """Write ``summary`` as JSON to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(summary.to_dict(), f, indent=2, default=str)
    logger.info(f"Run summary written to {path}")
    return path


def _format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(round(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


def _status_line(summary: RunSummary) -> str:
    if summary.success:
        suffix = " (dry run)" if summary.dry_run else ""
        return f"The workflow completed successfully{suffix}."
    failed = ", ".join(summary.failed) or "before any stage ran"
    return f"The workflow completed unsuccessfully: failed at {failed}."


def _lines(items: Iterable[str]) -> str:
    return "\n".join(f"  - {item}" for item in items) or "  (none)"


def render_text(summary: RunSummary, version: str) -> str:
    """Render the plaintext message body."""
    error_block = ""
    if summary.error_message:
        error_block = f"\nError message:\n{summary.error_message}\n"
    return TEXT_TEMPLATE.substitute(
        version=version,
        run_name=summary.run_name,
        status_line=_status_line(summary),
        end_time=summary.end_time.strftime("%Y-%m-%d %H:%M:%S"),
        duration=_format_duration(summary.duration),
        outdir=summary.outdir,
        executed=_lines(summary.executed),
        skipped=_lines(summary.skipped),
        disabled=_lines(f"{flag}: {why}" for flag, why in summary.disabled_reasons.items()),
        parameters=_lines(f"{key}: {value}" for key, value in summary.parameters.items()),
        error_block=error_block,
    )


def render_html(summary: RunSummary, version: str) -> str:
    """Render the HTML message body."""
    error_block = ""
    if summary.error_message:
        error_block = f"<pre>{escape(summary.error_message)}</pre>"
    return HTML_TEMPLATE.substitute(
        version=escape(version),
        run_name=escape(summary.run_name),
        colour="#3c763d" if summary.success else "#a94442",
        status_line=escape(_status_line(summary)),
        error_block=error_block,
        end_time=summary.end_time.strftime("%Y-%m-%d %H:%M:%S"),
        duration=_format_duration(summary.duration),
        outdir=escape(str(summary.outdir)),
        executed="".join(f"<li>{escape(name)}</li>" for name in summary.executed),
        disabled="".join(
            f"<li>{escape(flag)}: {escape(why)}</li>"
            for flag, why in summary.disabled_reasons.items()
        ),
        parameters="".join(
            f"<tr><th style='text-align:left'>{escape(str(key))}</th>"
            f"<td><code>{escape(str(value))}</code></td></tr>"
            for key, value in summary.parameters.items()
        ),
    )


def build_email(
    summary: RunSummary,
    recipient: str,
    settings: Optional[Settings] = None,
    plaintext: bool = False,
) -> EmailMessage:
    """
    Compose the completion e-mail.

    Args:
        summary: Run summary
        recipient: Destination address
        settings: Application settings
        plaintext: Send only the plaintext part

    Returns:
        Message ready for ``sendmail -t``
    """
    settings = settings or get_settings()
    status = "Successful" if summary.success else "FAILED"
    message = EmailMessage()
    message["To"] = recipient
    message["From"] = settings.notification.sender
    message["Subject"] = f"[amplicon-router] {status}: {summary.run_name}"
    message.set_content(render_text(summary, settings.app_version))
    if not plaintext:
        message.add_alternative(render_html(summary, settings.app_version), subtype="html")
    return message


def send_notification(
    summary: RunSummary,
    params: PipelineParameters,
    settings: Optional[Settings] = None,
) -> bool:
    """
    Deliver the completion e-mail if ``params.email`` is set.

    Returns:
        True when a message was handed to sendmail
    """
    if not params.email:
        return False

    settings = settings or get_settings()
    plaintext = params.plaintext_email or settings.notification.plaintext_email
    message = build_email(summary, params.email, settings, plaintext=plaintext)

    try:
        subprocess.run(
            [settings.notification.sendmail_binary, "-t"],
            input=message.as_bytes(),
            capture_output=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning(f"Could not send notification e-mail to {params.email}: {e}")
        return False

    logger.info(f"Sent notification e-mail to {params.email}")
    return True
