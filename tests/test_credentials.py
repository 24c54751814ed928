"""Tests for initial admin password recovery."""

import subprocess
from unittest.mock import patch

import pytest

from frugal_jenkins.credentials import (
    CloudRunLogSource,
    StaticLogSource,
    clean_candidate,
    copy_to_clipboard,
    diagnostic_lines,
    find_candidate,
    retrieve_initial_credential,
)
from frugal_jenkins.utils import CommandError, LogSourceError

PASSWORD = "9103941c8fa94803bd8f1bbf9fac35fd"
MARKER = "Please use the following password"


def startup_log(password_line, filler=20):
    lines = [f"2025-07-31 02:15:{i:02d} INFO jenkins.InitReactorRunner Started" for i in range(filler)]
    lines += [
        "2025-07-31 02:15:21 *************************************************************",
        "2025-07-31 02:15:22 Jenkins initial setup is required. An admin user has been created.",
        f"2025-07-31 02:15:23 {MARKER} to proceed to installation:",
        password_line,
        "2025-07-31 02:15:24 This may also be found at: /var/jenkins_home/secrets/initialAdminPassword",
        "2025-07-31 02:15:25 *************************************************************",
    ]
    return lines


class TestRetrieveInitialCredential:
    def test_concrete_scenario(self):
        source = StaticLogSource([
            f"2025-07-31 02:15:23 {MARKER}",
            f"2025-07-31 02:15:23 {PASSWORD}",
        ])

        result = retrieve_initial_credential(source, MARKER, 32)

        assert result.found
        assert result.password == PASSWORD
        assert result.diagnostics == []

    def test_password_in_full_startup_banner(self):
        source = StaticLogSource(startup_log(f"2025-07-31 02:15:23 {PASSWORD}"))

        assert retrieve_initial_credential(source).password == PASSWORD

    def test_surrounding_whitespace_is_stripped(self):
        source = StaticLogSource([MARKER, f"  \t{PASSWORD}\r "])

        assert retrieve_initial_credential(source).password == PASSWORD

    @pytest.mark.parametrize("candidate", [PASSWORD[:-1], PASSWORD + "a"])
    def test_wrong_length_falls_back_to_diagnostics(self, candidate):
        source = StaticLogSource(startup_log(f"2025-07-31 02:15:23 {candidate}"))

        result = retrieve_initial_credential(source)

        assert not result.found
        assert result.password is None
        assert any(MARKER in line for line in result.diagnostics)
        assert all(candidate not in line for line in result.diagnostics)

    def test_missing_marker_lists_recent_matching_lines(self):
        old = ["2025-07-31 01:00:00 old password hint"]
        filler = [f"2025-07-31 02:00:{i:02d} INFO noise" for i in range(50)]
        recent = [
            "2025-07-31 02:10:00 Jenkins INITIAL setup is required",
            "2025-07-31 02:10:01 INFO noise",
            "2025-07-31 02:10:02 Unlock Jenkins",
        ]
        source = StaticLogSource(old + filler + recent)

        result = retrieve_initial_credential(source)

        assert not result.found
        assert result.diagnostics == [
            "2025-07-31 02:10:00 Jenkins INITIAL setup is required",
            "2025-07-31 02:10:02 Unlock Jenkins",
        ]

    def test_marker_on_last_line_falls_back(self):
        source = StaticLogSource([f"2025-07-31 02:15:23 {MARKER}"])

        result = retrieve_initial_credential(source)

        assert not result.found
        assert result.diagnostics == [f"2025-07-31 02:15:23 {MARKER}"]

    def test_pending_marker_hides_previous_boot_password(self):
        stale = "a" * 32
        source = StaticLogSource([
            f"2025-07-31 02:15:23 {MARKER}",
            f"2025-07-31 02:15:23 {stale}",
            "2025-07-31 03:00:00 restart",
            f"2025-07-31 03:00:41 {MARKER}",
        ])

        result = retrieve_initial_credential(source)

        assert not result.found
        assert result.password is None
        assert f"2025-07-31 03:00:41 {MARKER}" in result.diagnostics
        assert find_candidate(source.lines, MARKER) is None

    def test_last_marker_wins(self):
        other = "a" * 32
        source = StaticLogSource([MARKER, other, "restart", MARKER, PASSWORD])

        assert retrieve_initial_credential(source).password == PASSWORD

    def test_diagnostics_cap(self):
        source = StaticLogSource([f"setup step {i}" for i in range(30)])

        result = retrieve_initial_credential(source, max_diagnostics=10)

        assert len(result.diagnostics) == 10
        assert result.diagnostics[0] == "setup step 0"

    def test_idempotent_against_unchanged_stream(self):
        for lines in (startup_log(PASSWORD), startup_log("short")):
            source = StaticLogSource(lines)
            assert retrieve_initial_credential(source) == retrieve_initial_credential(source)

    def test_log_source_failure_propagates(self):
        class BrokenSource:
            def tail(self, limit):
                raise LogSourceError("permission denied")

        with pytest.raises(LogSourceError):
            retrieve_initial_credential(BrokenSource())

    def test_scans_only_requested_window(self):
        lines = [MARKER, PASSWORD] + ["INFO noise"] * 200
        source = StaticLogSource(lines)

        assert not retrieve_initial_credential(source, log_limit=200).found


class TestHelpers:
    def test_clean_candidate_strips_timestamp(self):
        assert clean_candidate(f"2025-07-31 02:15:23 {PASSWORD}") == PASSWORD

    def test_clean_candidate_without_timestamp(self):
        assert clean_candidate(f" {PASSWORD} ") == PASSWORD

    def test_find_candidate_absent(self):
        assert find_candidate(["a", "b"], MARKER) is None

    def test_diagnostic_lines_case_insensitive(self):
        lines = ["PASSWORD here", "nothing", "Initial", "SetUp", "unlock", "other"]
        assert diagnostic_lines(lines) == ["PASSWORD here", "Initial", "SetUp", "unlock"]


class TestCloudRunLogSource:
    def test_command(self):
        source = CloudRunLogSource("jenkins-ultra-frugal", "us-central1", project="demo")

        assert source.command(200) == [
            "gcloud", "run", "services", "logs", "read", "jenkins-ultra-frugal",
            "--region=us-central1", "--limit=200", "--project=demo",
        ]

    @patch("frugal_jenkins.credentials.time.sleep")
    @patch("frugal_jenkins.credentials.command_exists", return_value=True)
    @patch("frugal_jenkins.credentials.run_command")
    def test_single_retry_then_success(self, mock_run, mock_exists, mock_sleep):
        mock_run.side_effect = [
            CommandError("Command timed out after 10s"),
            subprocess.CompletedProcess(args=[], returncode=0, stdout="line 1\nline 2\n", stderr=""),
        ]
        source = CloudRunLogSource("svc", "us-central1", timeout=10)

        assert source.tail(50) == ["line 1", "line 2"]
        assert mock_run.call_count == 2
        assert mock_run.call_args.kwargs["timeout"] == 10
        mock_sleep.assert_called_once()

    @patch("frugal_jenkins.credentials.time.sleep")
    @patch("frugal_jenkins.credentials.command_exists", return_value=True)
    @patch("frugal_jenkins.credentials.run_command", side_effect=CommandError("auth required"))
    def test_persistent_failure_raises(self, mock_run, mock_exists, mock_sleep):
        with pytest.raises(LogSourceError, match="auth required"):
            CloudRunLogSource("svc", "us-central1").tail(200)
        assert mock_run.call_count == 2

    @patch("frugal_jenkins.credentials.command_exists", return_value=False)
    def test_missing_gcloud_raises(self, mock_exists):
        with pytest.raises(LogSourceError, match="gcloud"):
            CloudRunLogSource("svc", "us-central1").tail(200)


class TestClipboard:
    @patch("frugal_jenkins.credentials.command_exists", return_value=False)
    def test_no_utility(self, mock_exists):
        assert copy_to_clipboard(PASSWORD) is False

    @patch("frugal_jenkins.credentials.run_command", side_effect=CommandError("boom"))
    @patch("frugal_jenkins.credentials.command_exists", return_value=True)
    def test_failures_are_ignored(self, mock_exists, mock_run):
        assert copy_to_clipboard(PASSWORD) is False

    @patch("frugal_jenkins.credentials.run_command")
    @patch("frugal_jenkins.credentials.command_exists", side_effect=lambda name: name == "pbcopy")
    def test_uses_first_available_utility(self, mock_exists, mock_run):
        assert copy_to_clipboard(PASSWORD) is True
        mock_run.assert_called_once_with(["pbcopy"], input=PASSWORD, timeout=5)
