"""Tests for the run command."""

import argparse

import pytest

from sevenzip_backup.cli import run as run_cmd
from sevenzip_backup.config import CliOverrides, PostRunActionSettings
from sevenzip_backup.config.jobs import JobSelection
from sevenzip_backup.core.report import JobReportData, JobStatus


def fake_job_runner(statuses):
    """Job runner returning a fixed status per job and recording the order."""
    calls = []

    def _run(effective, config, report, run_mode):
        calls.append(effective.job_name)
        report.status = statuses.get(effective.job_name, JobStatus.SUCCESS)
        report.finish()
        return report

    _run.calls = calls
    return _run


class TestRunSelection:
    """Tests for run_selection."""

    def test_stop_set_on_failure(self, sample_config):
        """Test StopSet skips the jobs after a failure."""
        runner = fake_job_runner({"Docs": JobStatus.FAILURE})
        selection = JobSelection(jobs=["Docs", "Photos"], set_name="Nightly", stop_set_on_error=True)

        reports, _ = run_cmd.run_selection(sample_config, selection, CliOverrides(), job_runner=runner)

        assert runner.calls == ["Docs"]
        assert [r.status for r in reports] == [JobStatus.FAILURE]

    def test_continue_set_on_failure(self, sample_config):
        """Test ContinueSet runs every job."""
        runner = fake_job_runner({"Docs": JobStatus.FAILURE})
        selection = JobSelection(jobs=["Docs", "Photos"], set_name="Nightly", stop_set_on_error=False)

        reports, _ = run_cmd.run_selection(sample_config, selection, CliOverrides(), job_runner=runner)

        assert runner.calls == ["Docs", "Photos"]
        assert run_cmd.overall_status(reports) is JobStatus.FAILURE

    def test_config_error_is_job_failure(self, sample_config):
        """Test a job that cannot be resolved fails without running."""
        runner = fake_job_runner({})
        selection = JobSelection(jobs=["Missing", "Docs"], stop_set_on_error=False)

        reports, _ = run_cmd.run_selection(sample_config, selection, CliOverrides(), job_runner=runner)

        assert runner.calls == ["Docs"]
        assert reports[0].status is JobStatus.FAILURE
        assert "Missing" in reports[0].error_message

    def test_report_carries_configuration(self, sample_config):
        """Test the effective configuration patch reaches the report."""
        seen = []

        def runner(effective, config, report, run_mode):
            seen.append(report.targets)
            return report

        run_cmd.run_selection(
            sample_config, JobSelection(jobs=["Docs"]), CliOverrides(), job_runner=runner
        )
        assert seen == [["NAS"]]

    def test_per_job_log_files(self, sample_config_toml, make_config, tmp_path):
        """Test each job logs to its own file when file logging is on."""
        log_dir = tmp_path / "logs"
        config = make_config(
            f'EnableFileLogging = true\nLogDirectory = "{log_dir.as_posix()}"\n' + sample_config_toml
        )
        run_cmd.run_selection(
            config, JobSelection(jobs=["Docs"]), CliOverrides(), job_runner=fake_job_runner({})
        )
        assert len(list(log_dir.glob("Docs_*.log"))) == 1


class TestExitCodes:
    """Tests for the overall status and exit code."""

    @pytest.mark.parametrize(
        "statuses,code",
        [
            ([JobStatus.SUCCESS, JobStatus.SUCCESS], 0),
            ([JobStatus.SUCCESS, JobStatus.SKIPPED], 0),
            ([JobStatus.SKIPPED, JobStatus.WARNINGS], 1),
            ([JobStatus.WARNINGS, JobStatus.FAILURE, JobStatus.SUCCESS], 2),
        ],
    )
    def test_worst_status_wins(self, statuses, code):
        reports = []
        for index, status in enumerate(statuses):
            report = JobReportData(f"job{index}")
            report.status = status
            reports.append(report)
        assert run_cmd.exit_code_for(run_cmd.overall_status(reports)) == code

    def test_no_config(self, tmp_path, monkeypatch):
        """Test a missing configuration file fails the run."""
        monkeypatch.setattr(run_cmd, "find_config_file", lambda path: None)
        args = argparse.Namespace(config=None, verbose=False, quiet=True, debug=False)
        assert run_cmd.execute_run(args) == 2


class TestPostRunChoice:
    """Tests for choose_post_run_action."""

    def test_last_job_without_set(self, sample_config):
        last = PostRunActionSettings(True, "Lock")
        chosen = run_cmd.choose_post_run_action(
            sample_config, JobSelection(jobs=["Docs"]), CliOverrides(), last
        )
        assert chosen is last

    def test_set_action_wins(self, sample_config):
        """Test the set's action replaces the last job's, over the defaults."""
        selection = JobSelection(
            jobs=["Docs"],
            set_name="Nightly",
            set_post_run_action={"Enabled": True, "Action": "Hibernate"},
        )
        chosen = run_cmd.choose_post_run_action(
            sample_config, selection, CliOverrides(), PostRunActionSettings(True, "Lock")
        )
        assert chosen.action == "Hibernate"
        assert chosen.delay_seconds == 30

    def test_cli_action_wins(self, sample_config):
        """Test a CLI action keeps the job level result."""
        selection = JobSelection(
            jobs=["Docs"], set_post_run_action={"Enabled": True, "Action": "Hibernate"}
        )
        last = PostRunActionSettings(True, "Shutdown")
        chosen = run_cmd.choose_post_run_action(
            sample_config, selection, CliOverrides(post_run_action="Shutdown"), last
        )
        assert chosen is last
