"""Tests for the external command runner."""

import logging

import pytest

from zori_builder.errors import StageFailed, TimedOut
from zori_builder.lib.command import CommandRunner

from .conftest import wait_dead


class TestRun:
    """Exit status handling."""

    def test_captures_output(self):
        res = CommandRunner().run(["sh", "-c", "echo out; echo err >&2"])
        assert res.returncode == 0
        assert res.stdout == "out"
        assert res.stderr == "err"
        assert res.timed_out is False
        assert res.duration >= 0

    def test_nonzero_raises_with_stderr_tail(self):
        with pytest.raises(StageFailed) as exc:
            CommandRunner().run(["sh", "-c", "echo boom >&2; exit 3"])
        assert exc.value.returncode == 3
        assert "boom" in exc.value.stderr_tail
        assert exc.value.argv[0] == "sh"
        assert not isinstance(exc.value, TimedOut)

    def test_nonzero_without_check_is_returned(self):
        res = CommandRunner().run(["sh", "-c", "exit 7"], check=False)
        assert res.returncode == 7

    def test_missing_command(self):
        with pytest.raises(StageFailed, match="not found"):
            CommandRunner().run(["definitely-not-a-real-command-zori"])

    def test_cwd_and_env(self, tmp_path):
        res = CommandRunner().run(["sh", "-c", 'pwd; echo "$ZORI_TEST"'], cwd=str(tmp_path), env={"ZORI_TEST": "yes"})
        assert res.stdout.splitlines() == [str(tmp_path), "yes"]

    def test_dry_run_does_not_execute(self, tmp_path):
        marker = tmp_path / "touched"
        res = CommandRunner(dry_run=True).run(["touch", str(marker)])
        assert res.returncode == 0
        assert not marker.exists()


class TestStreaming:
    def test_lines_are_logged_and_invocation_recorded(self, caplog):
        caplog.set_level(logging.DEBUG, logger="zori_builder.lib.command")
        CommandRunner().run(["sh", "-c", "echo first; echo second"])
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("CMD sh -c") for m in messages)
        assert "STDOUT first" in messages
        assert "STDOUT second" in messages
        assert any(m.startswith("EXIT 0 after") for m in messages)

    def test_excerpt_keeps_recent_lines(self):
        runner = CommandRunner(excerpt_lines=2)
        runner.run(["sh", "-c", "echo a; echo b; echo c"])
        assert runner.excerpt() == "b\nc"
        runner.clear_excerpt()
        assert runner.excerpt() == ""

    def test_large_output_does_not_deadlock(self):
        res = CommandRunner().run(["sh", "-c", "i=0; while [ $i -lt 20000 ]; do echo line$i; echo err$i >&2; i=$((i+1)); done"])
        assert len(res.stdout.splitlines()) == 20000
        assert len(res.stderr.splitlines()) == 20000


class TestTimeout:
    def test_timeout_is_distinct_and_kills_tree(self, tmp_path):
        pidfile = tmp_path / "child.pid"
        runner = CommandRunner(grace_period=1.0)
        script = f'sleep 30 & echo $! > "{pidfile}"; wait'
        with pytest.raises(TimedOut) as exc:
            runner.run(["sh", "-c", script], timeout=0.5)
        assert exc.value.kind == "TimedOut"
        pid = int(pidfile.read_text().strip())
        assert wait_dead(pid)

    def test_default_timeout_applies(self):
        runner = CommandRunner(default_timeout=0.3, grace_period=0.5)
        with pytest.raises(TimedOut):
            runner.run(["sleep", "10"])
