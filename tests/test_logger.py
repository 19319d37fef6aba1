"""Tests for consent_audit.utils.logger — console lines, timers and file output."""

from __future__ import annotations

import contextvars

import pytest

from consent_audit.utils import logger


class TestConsoleOutput:
    def test_line_carries_context_message_and_fields(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger.create_logger("Test").info("Hello", {"count": 3, "name": "x", "ok": True})
        err = capsys.readouterr().err
        assert "[Test]" in err
        assert "Hello" in err
        assert "count=" in err
        assert '"x"' in err

    def test_long_strings_are_truncated(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger.create_logger("Test").warn("long", {"value": "a" * 500})
        err = capsys.readouterr().err
        assert "a" * 297 + "..." in err
        assert "a" * 298 not in err

    def test_collections_are_summarised(self) -> None:
        assert "[2 items]" in logger._render(["a", "b"])
        assert "[1 keys]" in logger._render({"a": 1})

    def test_section_banner(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger.create_logger("Test").section("Auditing: https://www.example.com")
        assert "Auditing: https://www.example.com" in capsys.readouterr().err


class TestTimers:
    def test_end_timer_returns_duration(self) -> None:
        log = logger.create_logger("Timer")
        log.start_timer("op")
        assert log.end_timer("op") >= 0

    def test_unknown_timer_returns_zero(self, capsys: pytest.CaptureFixture[str]) -> None:
        log = logger.create_logger("Timer")
        assert log.end_timer("never-started") == 0.0
        assert 'Timer "never-started" was not started' in capsys.readouterr().err

    def test_timers_are_per_logger_context(self) -> None:
        a = logger.create_logger("A")
        b = logger.create_logger("B")
        a.start_timer("shared")
        assert b.end_timer("shared") == 0.0
        assert a.end_timer("shared") >= 0

    def test_reset_forgets_running_timers(self) -> None:
        log = logger.create_logger("Timer")
        log.start_timer("op")
        logger.reset_timers()
        assert log.end_timer("op") == 0.0

    def test_timers_are_isolated_per_context(self) -> None:
        log = logger.create_logger("Timer")
        logger.reset_timers()
        log.start_timer("outer")

        def inner() -> float:
            logger.reset_timers()
            return log.end_timer("outer")

        assert contextvars.Context().run(inner) == 0.0
        assert log.end_timer("outer") >= 0


class TestFormatting:
    def test_format_duration(self) -> None:
        assert logger._format_duration(250) == "250ms"
        assert logger._format_duration(1500) == "1.50s"
        assert logger._format_duration(90000) == "1m 30.0s"

    def test_safe_name(self) -> None:
        assert logger._safe_name("www.example.com") == "example.com"
        assert logger._safe_name("a/b:c") == "a_b_c"


class TestFileOutput:
    def test_disabled_without_flag(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.delenv("WRITE_TO_FILE", raising=False)
        monkeypatch.chdir(tmp_path)
        logger.start_log_file("www.example.com")
        assert logger.save_result_file("example.com", "{}") is None
        assert not (tmp_path / ".logs").exists()

    def test_save_result_written(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.setenv("WRITE_TO_FILE", "true")
        monkeypatch.chdir(tmp_path)
        path = logger.save_result_file("www.example.com", '{"score": 1}')
        assert path is not None
        assert (tmp_path / ".results").is_dir()
        with open(path, encoding="utf-8") as f:
            assert f.read() == '{"score": 1}'

    def test_log_file_receives_plain_lines(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.setenv("WRITE_TO_FILE", "true")
        monkeypatch.chdir(tmp_path)

        def audit() -> None:
            logger.start_log_file("www.example.com")
            logger.create_logger("File").info("Captured", {"cookies": 4})
            logger.end_log_file()

        contextvars.Context().run(audit)
        (log_file,) = (tmp_path / ".logs").iterdir()
        text = log_file.read_text(encoding="utf-8")
        assert "Consent Audit Log - www.example.com" in text
        assert "[File] Captured cookies=4" in text
        assert "\033[" not in text
