"""
Test configuration and fixtures for the Amplicon Workflow Router.

This module provides common test fixtures and configuration for the test suite.
"""

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator

import pytest
from loguru import logger

from amplicon_router.config.parameters import PipelineParameters
from amplicon_router.config.settings import (
    ComputeSettings,
    NotificationSettings,
    Settings,
    get_settings,
)

PRIMER_FW = "GTGYCAGCMGCCGCGGTAA"
PRIMER_RV = "GGACTACNVGGGTWTCTAAT"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def metadata_file(temp_dir: Path) -> Path:
    """Create a small sample metadata sheet."""
    path = temp_dir / "metadata.tsv"
    path.write_text(
        "ID\ttreatment\tsite\n"
        "sample1\tcontrol\tA\n"
        "sample2\tdrought\tB\n"
    )
    return path


@pytest.fixture
def reads_dir(temp_dir: Path) -> Path:
    """Create a read directory with one paired sample."""
    path = temp_dir / "data"
    path.mkdir(exist_ok=True)
    for mate in ("1", "2"):
        (path / f"sample1_S1_L001_R{mate}_001.fastq.gz").write_bytes(b"")
    return path


@pytest.fixture
def make_params(temp_dir: Path) -> Callable[..., PipelineParameters]:
    """Factory for parameter sets; any field may be overridden."""

    def factory(**overrides: Any) -> PipelineParameters:
        data: Dict[str, Any] = {
            "fw_primer": PRIMER_FW,
            "rv_primer": PRIMER_RV,
            "metadata": str(temp_dir / "metadata.tsv"),
            "outdir": str(temp_dir / "results"),
        }
        data.update(overrides)
        return PipelineParameters.from_dict(data)

    return factory


@pytest.fixture
def params_file(temp_dir: Path, metadata_file: Path, reads_dir: Path) -> Path:
    """Write a JSON parameter file using legacy parameter names."""
    path = temp_dir / "params.json"
    path.write_text(json.dumps({
        "reads": str(reads_dir),
        "FW_primer": PRIMER_FW,
        "RV_primer": PRIMER_RV,
        "metadata": str(metadata_file),
        "outdir": str(temp_dir / "results"),
    }))
    return path


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings configuration."""
    return Settings(
        debug=True,
        compute=ComputeSettings(
            max_workers=2, shell="/bin/sh", stderr_tail_lines=5, kill_timeout=0.5
        ),
        notification=NotificationSettings(sendmail_binary=str(temp_dir / "no-sendmail")),
    )


# Test markers for different test categories
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Isolate each test from the caller's settings and logging sinks."""
    saved = {k: v for k, v in os.environ.items() if k.startswith("AMPLICON_ROUTER_")}
    for key in saved:
        os.environ.pop(key)
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()
    os.environ.update(saved)
    logger.remove()
    logger.add(sys.stderr, level="WARNING")
