from __future__ import annotations

from pathlib import Path

import pytest

from gcedirector.observability.logging import (
    LogConfig,
    render_context,
    setup_logging,
    teardown_logging,
)
from gcedirector.providers.gcp.template import is_prefix_valid

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestRenderContext:
    def test_origin_then_resources(self):
        extra = {
            "operation": "operation-7",
            "component": "poller",
            "provider": "gcp",
            "zone": "us-central1-a",
        }
        assert render_context(extra) == " [gcp/poller zone=us-central1-a operation=operation-7]"

    def test_none_values_are_skipped(self):
        extra = {"provider": "gcp", "component": "sql", "zone": None, "instance": "db-1"}
        assert render_context(extra) == " [gcp/sql instance=db-1]"

    def test_unknown_keys_are_ignored(self):
        assert render_context({"request_id": "abc"}) == ""


class TestSetupLogging:
    def test_file_sink_receives_library_logs(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "gcedirector.log"
        handler_ids = setup_logging(LogConfig(file=str(log_file)))
        try:
            is_prefix_valid("Not-Valid")
        finally:
            teardown_logging(handler_ids)

        content = log_file.read_text()
        assert "Instance name prefix 'Not-Valid' is invalid." in content
        assert "[gcp/template]" in content

    def test_disabled_after_teardown(self, tmp_path: Path):
        log_file = tmp_path / "gcedirector.log"
        handler_ids = setup_logging(LogConfig(file=str(log_file)))
        teardown_logging(handler_ids)

        is_prefix_valid("Not-Valid")

        assert log_file.read_text() == ""

    def test_no_sinks(self):
        handler_ids = setup_logging(LogConfig(file=None, console=False))
        teardown_logging(handler_ids)
        assert handler_ids == []


class TestLogConfigFromRaw:
    def test_defaults(self):
        assert LogConfig.from_raw({}) == LogConfig()

    def test_invalid_retention(self):
        from gcedirector.core.exceptions import ConfigurationError

        with pytest.raises(ConfigurationError, match="Invalid log retention"):
            LogConfig.from_raw({"retention": "forever"})
