"""Pipeline parameters and application settings."""

from .parameters import PipelineParameters
from .settings import Settings, get_settings

__all__ = ["PipelineParameters", "Settings", "get_settings"]
