"""Tests for the subprocess runner, using the Python interpreter as the external tool."""

import sys
import threading
import time

import pytest

from vidfrompdf.exceptions import (
    SubprocessCancelledError,
    SubprocessFailureError,
    SubprocessTimeoutError,
    ToolNotFoundError,
)
from vidfrompdf.render.runner import CancelToken, SubprocessRunner


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


class TestCancelToken:
    """Tests for CancelToken."""

    def test_starts_uncancelled(self):
        token = CancelToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_raises(self):
        token = CancelToken()
        token.cancel()
        assert token.cancelled is True
        with pytest.raises(SubprocessCancelledError):
            token.raise_if_cancelled()


class TestSubprocessRunner:
    """Tests for SubprocessRunner.run."""

    def test_captures_output(self):
        """Test stdout and stderr are captured on success."""
        runner = SubprocessRunner()
        result = runner.run(
            _python("import sys; print('hello'); print('warn', file=sys.stderr)"),
            timeout=30,
        )
        assert result.ok
        assert result.returncode == 0
        assert result.stdout.strip() == "hello"
        assert result.stderr.strip() == "warn"

    def test_nonzero_exit_raises(self):
        """Test a failing tool surfaces its exit status and stderr."""
        runner = SubprocessRunner()
        with pytest.raises(SubprocessFailureError) as exc_info:
            runner.run(_python("import sys; print('boom', file=sys.stderr); sys.exit(3)"), timeout=30)

        err = exc_info.value
        assert err.returncode == 3
        assert "boom" in err.stderr
        assert "boom" in err.message
        assert err.retryable is True

    def test_nonzero_exit_without_check(self):
        runner = SubprocessRunner()
        result = runner.run(_python("import sys; sys.exit(2)"), timeout=30, check=False)
        assert result.returncode == 2
        assert not result.ok

    def test_missing_tool(self):
        """Test an unknown executable becomes ToolNotFoundError."""
        runner = SubprocessRunner()
        with pytest.raises(ToolNotFoundError) as exc_info:
            runner.run(["vfp-no-such-tool-xyz"], timeout=5)
        assert exc_info.value.tool == "vfp-no-such-tool-xyz"
        assert exc_info.value.retryable is False

    @pytest.mark.slow
    def test_timeout_kills_process(self):
        """Test a hung tool is killed once its deadline passes."""
        runner = SubprocessRunner(poll_interval_s=0.05)
        started = time.monotonic()
        with pytest.raises(SubprocessTimeoutError) as exc_info:
            runner.run(_python("import time; time.sleep(30)"), timeout=0.5)

        assert time.monotonic() - started < 10
        assert exc_info.value.timeout == 0.5

    @pytest.mark.slow
    def test_timeout_kills_child_processes(self, temp_output_dir):
        """Test the whole process group is killed, not only the direct child."""
        marker = temp_output_dir / "child-finished"
        child = f"import time; time.sleep(2); open({str(marker)!r}, 'w').close()"
        code = (
            "import subprocess, sys, time\n"
            f"subprocess.Popen([sys.executable, '-c', {child!r}])\n"
            "time.sleep(30)\n"
        )
        runner = SubprocessRunner(poll_interval_s=0.05)
        with pytest.raises(SubprocessTimeoutError):
            runner.run(_python(code), timeout=0.5)

        time.sleep(3)
        assert not marker.exists()

    @pytest.mark.slow
    def test_cancel_kills_process(self):
        """Test setting the token terminates a running tool."""
        runner = SubprocessRunner(poll_interval_s=0.05)
        token = CancelToken()
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(SubprocessCancelledError):
                runner.run(_python("import time; time.sleep(30)"), timeout=60, cancel=token)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 10

    def test_already_cancelled_does_not_start(self, temp_output_dir):
        marker = temp_output_dir / "started"
        token = CancelToken()
        token.cancel()
        runner = SubprocessRunner()
        with pytest.raises(SubprocessCancelledError):
            runner.run(_python(f"open({str(marker)!r}, 'w').close()"), timeout=30, cancel=token)
        assert not marker.exists()
