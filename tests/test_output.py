"""Unit tests for the output sink and observers."""

import logging

from azpanel.redaction import REDACTION_MARKER
from azpanel.runner.base import AzCommand, AzResult, Outcome, describe_failure, error_from_result
from azpanel.services.output import LoggingObserver, OutputSink

SECRET = "eyJhbGciOiJIUzI1NiJ9.payload.signature"


def _result(exit_code: int = 0, stdout: str = "", stderr: str = "") -> AzResult:
    outcome = Outcome.SUCCESS if exit_code == 0 else Outcome.NON_ZERO_EXIT
    return AzResult(AzCommand("account show"), exit_code, stdout, stderr, 12.0, outcome)


class TestOutputSink:
    """Test publishing to observers."""

    def test_publish_reaches_all_observers(self):
        sink = OutputSink()
        first: list[AzResult] = []
        second: list[AzResult] = []
        sink.subscribe(first.append)
        sink.subscribe(second.append)

        result = _result(stdout="[]")
        sink.publish(result)

        assert first == [result]
        assert second == [result]

    def test_published_results_are_redacted(self):
        """Observers never see secrets from either stream."""
        sink = OutputSink()
        seen: list[AzResult] = []
        sink.subscribe(seen.append)

        sink.publish(_result(1, stdout=f'{{"access_token": "{SECRET}"}}', stderr=f"Bearer {SECRET}"))

        assert SECRET not in seen[0].stdout
        assert SECRET not in seen[0].stderr
        assert REDACTION_MARKER in seen[0].stdout
        assert seen[0].exit_code == 1

    def test_publish_text_redacted(self):
        sink = OutputSink()
        texts: list[str] = []
        sink.subscribe_text(texts.append)
        sink.publish_text(f"token: Bearer {SECRET}")
        assert texts == [f"token: Bearer {REDACTION_MARKER}"]

    def test_unsubscribe(self):
        sink = OutputSink()
        seen: list[AzResult] = []
        unsubscribe = sink.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        sink.publish(_result())
        assert seen == []

    def test_failing_observer_isolated(self, caplog):
        """One broken observer neither raises nor blocks the others."""
        sink = OutputSink()
        seen: list[AzResult] = []

        def _broken(result: AzResult) -> None:
            raise RuntimeError("observer bug")

        sink.subscribe(_broken)
        sink.subscribe(seen.append)

        with caplog.at_level(logging.ERROR):
            sink.publish(_result())

        assert len(seen) == 1
        assert "Output observer failed" in caplog.text

    def test_separate_sinks_are_independent(self):
        """Sinks are owned instances, not a process-wide event."""
        a, b = OutputSink(), OutputSink()
        seen: list[AzResult] = []
        a.subscribe(seen.append)
        b.publish(_result())
        assert seen == []


class TestLoggingObserver:
    """Test the logging observer."""

    def test_success_logged_at_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="azpanel"):
            LoggingObserver()(_result(stdout="{}"))
        assert "az account show succeeded" in caplog.text

    def test_failure_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="azpanel"):
            LoggingObserver()(_result(2, stderr="ERROR: Please run 'az login'"))
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "non_zero_exit" in record.getMessage()
        assert "az login" in record.getMessage()

    def test_command_text_redacted(self, caplog):
        """Secrets passed as arguments never reach the log."""
        command = AzCommand("rest", ("--headers", f"Authorization=Bearer {SECRET}"))
        result = AzResult(command, 1, "", "ERROR: Forbidden", 5.0, Outcome.NON_ZERO_EXIT)

        with caplog.at_level(logging.INFO, logger="azpanel"):
            LoggingObserver()(result)

        assert SECRET not in caplog.text
        assert REDACTION_MARKER in caplog.text


class TestFailureText:
    """Test failure descriptions built from results."""

    def test_command_arguments_redacted(self):
        command = AzCommand("rest", ("--headers", f"Authorization=Bearer {SECRET}"))
        result = AzResult(command, 1, "", "ERROR: Forbidden", 5.0, Outcome.NON_ZERO_EXIT)

        error = error_from_result(result)

        assert SECRET not in describe_failure(result)
        assert SECRET not in str(error)
        assert SECRET not in error.command
        assert str(error).endswith("ExitCode=1\nERROR: Forbidden")
