"""
Custom exceptions for the Amplicon Workflow Router.

This module defines the exception hierarchy used throughout the application.
Every error is fatal for the run it occurs in: configuration and wiring
errors are raised before any external tool is invoked, tool failures abort
the run without retry.
"""

from typing import Optional, Any, Dict, List


class AmpliconRouterError(Exception):
    """Base exception class for all router errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize AmpliconRouterError.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.details:
            result += f" (Details: {self.details})"
        return result


class ConfigurationError(AmpliconRouterError):
    """Raised when parameters are missing, malformed or conflicting."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs
    ):
        """
        Initialize ConfigurationError.

        Args:
            message: Error message
            config_key: Parameter that caused the error
            config_value: Offending value
            **kwargs: Additional arguments passed to parent
        """
        details = kwargs.pop("details", None) or {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)

        kwargs.setdefault("error_code", "CONFIG")
        super().__init__(message, details=details, **kwargs)
        self.config_key = config_key
        self.config_value = config_value


class PlanError(AmpliconRouterError):
    """Base class for errors detected while building an execution plan."""


class UnsatisfiedChannelError(PlanError):
    """Raised when an enabled stage consumes a channel nobody produces."""

    def __init__(self, stage: str, channel: str, **kwargs):
        message = (
            f"Stage '{stage}' consumes channel '{channel}' "
            f"but no enabled stage produces it"
        )
        kwargs.setdefault("error_code", "UNSATISFIED_CHANNEL")
        super().__init__(
            message, details={"stage": stage, "channel": channel}, **kwargs
        )
        self.stage = stage
        self.channel = channel


class ChannelConflictError(PlanError):
    """Raised when more than one enabled stage produces the same channel."""

    def __init__(self, channel: str, producers: List[str], **kwargs):
        message = (
            f"Channel '{channel}' has {len(producers)} enabled producers: "
            f"{', '.join(producers)}"
        )
        kwargs.setdefault("error_code", "CHANNEL_CONFLICT")
        super().__init__(
            message, details={"channel": channel, "producers": producers}, **kwargs
        )
        self.channel = channel
        self.producers = producers


class PlanCycleError(PlanError):
    """Raised when the enabled stages cannot be ordered topologically."""

    def __init__(self, stages: List[str], **kwargs):
        message = f"Stage dependencies form a cycle among: {', '.join(stages)}"
        kwargs.setdefault("error_code", "PLAN_CYCLE")
        super().__init__(message, details={"stages": stages}, **kwargs)
        self.stages = stages


class ExternalToolError(AmpliconRouterError):
    """Raised when a delegated tool invocation fails."""

    def __init__(
        self,
        stage: str,
        command: Optional[str],
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        log_file: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        """
        Initialize ExternalToolError.

        The tool's own diagnostic output is carried verbatim in ``stderr``;
        the router never interprets it.

        Args:
            stage: Name of the stage whose command failed
            command: Rendered command line
            returncode: Exit status, None if the command could not start
            stderr: Tail of the tool's diagnostic output
            log_file: Path of the stage log file
            reason: Replaces the default first line of the message
            **kwargs: Additional arguments passed to parent
        """
        if reason is not None:
            message = f"Stage '{stage}' {reason}"
        elif returncode is None:
            message = f"Stage '{stage}' could not be started"
        else:
            message = f"Stage '{stage}' failed with exit status {returncode}"
        if stderr:
            message += f":\n{stderr.rstrip()}"

        details = {}
        if log_file:
            details["log_file"] = log_file
        kwargs.setdefault("error_code", "EXTERNAL_TOOL")
        super().__init__(message, details=details, **kwargs)
        self.stage = stage
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.log_file = log_file
