"""
Tests for whole-run orchestration.
"""

import json

import pytest

from amplicon_router.core.exceptions import ConfigurationError, ExternalToolError
from amplicon_router.core.types import Stage
from amplicon_router.execution.pipeline import AmpliconPipeline
from amplicon_router.utils.validation import (
    check_inputs,
    expand_read_pattern,
    validate_inputs,
)
from amplicon_router.routing.planner import build_plan


@pytest.mark.integration
def test_dry_run_writes_summary(make_params, test_settings, reads_dir, metadata_file, temp_dir):
    params = make_params(reads=str(reads_dir), metadata=str(metadata_file), run_name="dry")
    pipeline = AmpliconPipeline(params, settings=test_settings, dry_run=True)

    summary = pipeline.run()

    assert summary.success
    assert summary.dry_run
    assert set(summary.executed) == set(pipeline.plan.stage_names)
    data = json.loads(
        (temp_dir / "results" / "pipeline_info" / "run_summary.json").read_text()
    )
    assert data["run_name"] == "dry"
    assert data["executed"] == summary.executed


def test_missing_inputs_fail_before_execution(make_params, test_settings, temp_dir):
    params = make_params(reads=str(temp_dir / "nowhere"), metadata=str(temp_dir / "none.tsv"))
    pipeline = AmpliconPipeline(params, settings=test_settings)

    with pytest.raises(ConfigurationError, match="Missing input files") as exc_info:
        pipeline.run()

    assert exc_info.value.config_key == "reads"
    assert pipeline.executor.results == {}
    data = json.loads(
        (temp_dir / "results" / "pipeline_info" / "run_summary.json").read_text()
    )
    assert data["success"] is False
    assert "metadata" in data["error_message"]


def test_configuration_error_still_summarised(make_params, test_settings, temp_dir):
    params = make_params(fw_primer=None)
    pipeline = AmpliconPipeline(params, settings=test_settings)

    with pytest.raises(ConfigurationError):
        pipeline.run()

    assert pipeline.plan is None
    assert pipeline.summary is not None
    assert not pipeline.summary.success


@pytest.mark.integration
def test_tool_failure_still_summarised(make_params, test_settings, temp_dir, monkeypatch):
    stage = Stage(name="binary", command="printf '\\377\\n' >&2\nexit 1")
    monkeypatch.setattr(
        "amplicon_router.execution.pipeline.build_plan",
        lambda params: build_plan(params, catalog=(stage,)),
    )
    pipeline = AmpliconPipeline(make_params(run_name="bytes"), settings=test_settings)

    with pytest.raises(ExternalToolError):
        pipeline.run()

    data = json.loads(
        (temp_dir / "results" / "pipeline_info" / "run_summary.json").read_text()
    )
    assert data["success"] is False
    assert data["failed"] == ["binary"]


def test_unexpected_error_still_summarised(make_params, test_settings, temp_dir, monkeypatch):
    def unreadable(plan, params):
        raise PermissionError("metadata.tsv")

    monkeypatch.setattr("amplicon_router.execution.pipeline.check_inputs", unreadable)
    pipeline = AmpliconPipeline(make_params(), settings=test_settings)

    with pytest.raises(PermissionError):
        pipeline.run()

    assert not pipeline.summary.success
    assert "metadata.tsv" in pipeline.summary.error_message
    assert (temp_dir / "results" / "pipeline_info" / "run_summary.json").exists()


class TestInputValidation:

    def test_valid_inputs(self, make_params, reads_dir, metadata_file):
        params = make_params(reads=str(reads_dir), metadata=str(metadata_file))
        result = validate_inputs(build_plan(params), params)
        assert result.is_valid
        assert result.errors == []

    def test_empty_read_directory(self, make_params, temp_dir, metadata_file):
        empty = temp_dir / "empty"
        empty.mkdir()
        params = make_params(reads=str(empty), metadata=str(metadata_file))
        with pytest.raises(ConfigurationError, match="no files match"):
            check_inputs(build_plan(params), params)

    def test_only_planned_inputs_checked(self, make_params, metadata_file, temp_dir):
        artifact = temp_dir / "demux.qza"
        artifact.write_bytes(b"")
        params = make_params(
            q2_imported=str(artifact),
            metadata=str(metadata_file),
            reads=str(temp_dir / "nowhere"),
        )
        assert validate_inputs(build_plan(params), params).is_valid

    def test_missing_classifier(self, make_params, reads_dir, metadata_file, temp_dir):
        params = make_params(
            reads=str(reads_dir),
            metadata=str(metadata_file),
            classifier=str(temp_dir / "classifier.qza"),
        )
        result = validate_inputs(build_plan(params), params)
        assert not result.is_valid
        assert result.field_name == "classifier"

    def test_expand_read_pattern(self, reads_dir):
        matches = expand_read_pattern(str(reads_dir) + "/*_R{1,2}_001.fastq.gz")
        assert len(matches) == 2
        assert matches[0].endswith("_R1_001.fastq.gz")

