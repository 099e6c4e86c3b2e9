"""
Tests for plan execution.

Stages run real ``/bin/sh`` commands inside temporary directories.
"""

import time

import pytest

from amplicon_router.config.settings import ComputeSettings, Settings
from amplicon_router.core.exceptions import ExternalToolError, PlanError
from amplicon_router.core.types import DerivedFlags, Plan, Stage, StageKind, StageStatus
from amplicon_router.execution.executor import PlanExecutor, stage_log_path, tail
from amplicon_router.routing.planner import build_plan


def plan_for(params, *stages: Stage) -> Plan:
    return build_plan(params, catalog=stages)


@pytest.mark.integration
class TestSuccessfulRun:

    def test_chain(self, make_params, test_settings, temp_dir):
        params = make_params()
        plan = plan_for(
            params,
            Stage(name="make", outputs={"x": "x.txt"}, command="echo hello > {out[x]}"),
            Stage(
                name="copy",
                inputs=("x",),
                outputs={"y": "y.txt"},
                command="cat {in[x]} > {out[y]}\necho copied",
            ),
        )
        executor = PlanExecutor(params, settings=test_settings)
        results = executor.execute(plan)

        assert [r.stage for r in results] == ["make", "copy"]
        assert all(r.status is StageStatus.COMPLETED for r in results)
        output = temp_dir / "results" / "copy" / "y.txt"
        assert output.read_text() == "hello\n"
        assert executor.channels["y"] == output.absolute()

        log = stage_log_path(params, plan.get("copy")).read_text()
        assert "copied" in log
        assert not (temp_dir / "results" / "work" / "copy").exists()

    def test_keep_intermediates(self, make_params, test_settings, temp_dir):
        params = make_params(keep_intermediates=True)
        plan = plan_for(params, Stage(name="scratch", command="touch scratch.txt"))
        PlanExecutor(params, settings=test_settings).execute(plan)
        assert (temp_dir / "results" / "work" / "scratch" / "scratch.txt").exists()

    def test_source_and_passthrough_bound_inline(self, make_params, test_settings, metadata_file):
        params = make_params(metadata=str(metadata_file))
        plan = plan_for(
            params,
            Stage(name="sheet", kind=StageKind.SOURCE, sources={"sheet": "{params.metadata}"}),
            Stage(name="alias", kind=StageKind.PASSTHROUGH, inputs=("sheet",),
                  passthrough={"samples": "sheet"}),
            Stage(name="count", inputs=("samples",), outputs={"n": "n.txt"},
                  command="wc -l < {in[samples]} > {out[n]}"),
        )
        executor = PlanExecutor(params, settings=test_settings)
        executor.execute(plan)

        assert executor.channels["samples"] == metadata_file.absolute()
        assert executor.channels["n"].read_text().strip() == "3"
        assert executor.results["alias"].execution_time == 0.0

    def test_optional_input_waits_for_producer(self, make_params, test_settings):
        params = make_params()
        plan = plan_for(
            params,
            Stage(name="report", optional_inputs=("extra",), outputs={"r": "r.txt"},
                  command="echo '{in[extra]}' > {out[r]}"),
            Stage(name="extra", outputs={"extra": "e.txt"}, command="echo e > {out[extra]}"),
        )
        executor = PlanExecutor(params, settings=test_settings, max_workers=2)
        executor.execute(plan)
        assert executor.channels["r"].read_text().strip().endswith("e.txt")

    def test_callback(self, make_params, test_settings):
        params = make_params()
        seen = []
        plan = plan_for(params, Stage(name="one", command="true"), Stage(name="two", command="true"))
        PlanExecutor(params, settings=test_settings, on_stage_complete=seen.append).execute(plan)
        assert sorted(r.stage for r in seen) == ["one", "two"]


@pytest.mark.integration
class TestFailure:

    def test_tool_error_carries_stderr(self, make_params, test_settings):
        params = make_params()
        plan = plan_for(params, Stage(name="broken", command="echo boom >&2\nexit 3"))
        executor = PlanExecutor(params, settings=test_settings)

        with pytest.raises(ExternalToolError) as exc_info:
            executor.execute(plan)

        error = exc_info.value
        assert error.stage == "broken"
        assert error.returncode == 3
        assert "boom" in error.stderr
        assert "boom" in str(error)
        assert executor.results["broken"].status is StageStatus.FAILED
        assert executor.failed() == ["broken"]

    def test_set_e_stops_on_first_failing_line(self, make_params, test_settings, temp_dir):
        params = make_params()
        plan = plan_for(params, Stage(name="s", command="false\ntouch {task.publish_dir}/ran"))
        with pytest.raises(ExternalToolError):
            PlanExecutor(params, settings=test_settings).execute(plan)
        assert not (temp_dir / "results" / "s" / "ran").exists()

    def test_no_stage_started_after_failure(self, make_params, test_settings, temp_dir):
        params = make_params()
        plan = plan_for(
            params,
            Stage(name="fail", outputs={"f": "f"}, command="exit 1"),
            Stage(name="slow", outputs={"s": "s.txt"}, command="sleep 3\ntouch {out[s]}"),
            Stage(name="after_fail", inputs=("f",), command="touch {task.publish_dir}/ran"),
            Stage(name="after_slow", inputs=("s",), command="touch {task.publish_dir}/ran"),
        )
        executor = PlanExecutor(params, settings=test_settings, max_workers=2)

        with pytest.raises(ExternalToolError):
            executor.execute(plan)

        assert executor.results["fail"].status is StageStatus.FAILED
        assert executor.results["slow"].status is StageStatus.CANCELLED
        assert executor.results["after_fail"].status is StageStatus.CANCELLED
        assert executor.results["after_slow"].status is StageStatus.CANCELLED
        assert executor.cancelled
        assert not (temp_dir / "results" / "slow" / "s.txt").exists()
        assert not (temp_dir / "results" / "after_fail").exists()
        assert not (temp_dir / "results" / "after_slow").exists()

    def test_shell_not_found(self, make_params, temp_dir):
        settings = Settings(compute=ComputeSettings(shell=str(temp_dir / "no-shell")))
        params = make_params()
        plan = plan_for(params, Stage(name="s", command="true"))
        with pytest.raises(ExternalToolError, match="could not be started") as exc_info:
            PlanExecutor(params, settings=settings).execute(plan)
        assert exc_info.value.returncode is None

    def test_undecodable_stderr(self, make_params, test_settings):
        params = make_params()
        plan = plan_for(params, Stage(name="binary", command="printf '\\377\\n' >&2\nexit 1"))
        executor = PlanExecutor(params, settings=test_settings)

        with pytest.raises(ExternalToolError) as exc_info:
            executor.execute(plan)

        assert exc_info.value.returncode == 1
        assert "\ufffd" in exc_info.value.stderr
        assert executor.results["binary"].status is StageStatus.FAILED

    def test_internal_error_aborts_run(self, make_params, test_settings, monkeypatch):
        def explode(stage, params, channels):
            raise RuntimeError("renderer broke")

        monkeypatch.setattr("amplicon_router.execution.executor.render_command", explode)
        params = make_params()
        plan = plan_for(
            params,
            Stage(name="first", outputs={"x": "x"}, command="true"),
            Stage(name="second", inputs=("x",), command="true"),
        )
        executor = PlanExecutor(params, settings=test_settings)

        with pytest.raises(ExternalToolError, match="renderer broke") as exc_info:
            executor.execute(plan)

        assert exc_info.value.stage == "first"
        assert executor.results["first"].status is StageStatus.FAILED
        assert executor.results["second"].status is StageStatus.CANCELLED

    def test_stage_ignoring_sigterm_is_killed(self, make_params, test_settings):
        params = make_params()
        plan = plan_for(
            params,
            Stage(name="fail", command="sleep 0.5\nexit 1"),
            Stage(name="stubborn", command="trap '' TERM\nsleep 30"),
        )
        executor = PlanExecutor(params, settings=test_settings, max_workers=2)

        start = time.time()
        with pytest.raises(ExternalToolError, match="'fail'"):
            executor.execute(plan)

        assert time.time() - start < 15
        assert executor.results["stubborn"].status is StageStatus.CANCELLED

    def test_unbindable_plan(self, make_params, test_settings):
        plan = Plan(
            stages=(Stage(name="orphan", inputs=("missing",), command="true"),),
            flags=DerivedFlags(),
        )
        with pytest.raises(PlanError, match="orphan"):
            PlanExecutor(make_params(), settings=test_settings).execute(plan)


class TestDryRun:

    def test_nothing_executed(self, make_params, test_settings, temp_dir):
        params = make_params()
        plan = plan_for(
            params,
            Stage(name="a", outputs={"x": "x.txt"}, command="echo a > {out[x]}"),
            Stage(name="b", inputs=("x",), command="cat {in[x]}"),
        )
        results = PlanExecutor(params, settings=test_settings, dry_run=True).execute(plan)

        assert [r.status for r in results] == [StageStatus.DRY_RUN, StageStatus.DRY_RUN]
        assert results[1].command.startswith("cat ")
        assert results[1].command.strip().endswith("a/x.txt")
        assert not (temp_dir / "results").exists()

    def test_full_workflow(self, make_params, test_settings, reads_dir, metadata_file):
        params = make_params(reads=str(reads_dir), metadata=str(metadata_file))
        plan = build_plan(params)
        executor = PlanExecutor(params, settings=test_settings, dry_run=True)
        results = executor.execute(plan)

        assert len(results) == len(plan)
        assert all(r.success for r in results)
        assert "qiime dada2 denoise-paired" in executor.results["dada2_denoise"].command
        assert set(executor.executed()) == set(plan.stage_names)


def test_tail():
    text = "\n".join(str(i) for i in range(10)) + "\n"
    assert tail(text, 3) == "7\n8\n9"
    assert tail("", 3) == ""
