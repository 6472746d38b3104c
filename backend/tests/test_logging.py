"""Tests for the shared structlog setup used by the API and the worker."""

import logging

import structlog

from concierge.config import Settings
from concierge.logging import _TeeWriter, configure_logging, resolve_level


def _settings(**fields) -> Settings:
    return Settings(_env_file=None, **fields)


def _filter_class() -> str:
    # The bound wrapper's class name encodes its level, e.g. BoundLoggerFilteringAtWarning
    return type(structlog.get_logger().bind()).__name__


class TestResolveLevel:
    def test_case_insensitive(self):
        assert resolve_level(" debug ") == logging.DEBUG

    def test_unknown_means_info(self):
        assert resolve_level("chatty") == logging.INFO


class TestConfigureLogging:
    def test_level_from_settings(self):
        configure_logging(_settings(log_level="warning"))
        assert "Warning" in _filter_class()

    def test_renderer_depends_on_environment(self):
        configure_logging(_settings(environment="production"))
        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.processors.JSONRenderer)

        configure_logging(_settings(environment="development"))
        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.dev.ConsoleRenderer)

    def test_context_vars_are_merged_first(self):
        """job_id and request_id bound in context show up on every line."""
        configure_logging(_settings())
        processors = structlog.get_config()["processors"]
        assert processors[0] is structlog.contextvars.merge_contextvars

    def test_lines_carry_service_and_env(self):
        configure_logging(_settings(environment="staging"))
        add_service = structlog.get_config()["processors"][1]
        fields = add_service(None, "info", {"event": "agent_job_started"})
        assert fields["service"] == "concierge"
        assert fields["env"] == "staging"

    def test_chatty_libraries_quieted(self):
        configure_logging(_settings(log_level="DEBUG"))
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_log_file_tees_output(self, tmp_path):
        configure_logging(_settings(log_file=str(tmp_path / "concierge.log")))
        assert isinstance(structlog.get_config()["logger_factory"]._file, _TeeWriter)


class TestTeeWriter:
    def test_writes_to_stdout_and_file(self, tmp_path, capsys):
        path = tmp_path / "tee.log"
        writer = _TeeWriter(str(path))
        writer.write("agent_job_started\n")
        writer.flush()

        assert "agent_job_started" in path.read_text()
        assert "agent_job_started" in capsys.readouterr().out

    def test_unopenable_path_keeps_stdout(self, capsys):
        writer = _TeeWriter("/nonexistent/dir/concierge.log")
        writer.write("still here\n")
        writer.flush()

        captured = capsys.readouterr()
        assert "still here" in captured.out
        assert "Could not open log file" in captured.err

    def test_write_error_disables_file(self, tmp_path, capsys):
        writer = _TeeWriter(str(tmp_path / "fragile.log"))
        writer._file.close()

        writer.write("after close\n")

        assert writer._file is None
        captured = capsys.readouterr()
        assert "after close" in captured.out
        assert "write failed" in captured.err
