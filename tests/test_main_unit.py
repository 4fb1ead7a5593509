"""
Unit tests — Command-line entry point and logging setup.
"""

import logging
from unittest.mock import MagicMock, patch

from summary_pipeline.__main__ import main, parse_args
from summary_pipeline.log import NOISY_LIBS, configure_logging


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert args.limit is None
        assert args.name == "summarize_items"
        assert args.create_tables is False
        assert args.log_level == "INFO"

    def test_overrides(self):
        args = parse_args(["--limit", "50", "--name", "backfill", "--create-tables", "--log-level", "debug"])
        assert args.limit == 50
        assert args.name == "backfill"
        assert args.create_tables is True


class TestMain:

    def _run_returning(self, status):
        async def fake_run(cursor, args):
            return {"status": status}
        return fake_run

    @patch("summary_pipeline.__main__.configure_logging")
    @patch("summary_pipeline.__main__.load_dotenv")
    @patch("summary_pipeline.__main__.connect")
    def test_completed_run_commits_and_exits_zero(self, mock_connect, mock_dotenv, mock_logging):
        conn = MagicMock()
        mock_connect.return_value = conn

        with patch("summary_pipeline.__main__._run", self._run_returning("completed")):
            assert main(["--create-tables"]) == 0

        conn.commit.assert_called_once()
        conn.close.assert_called_once()
        assert conn.cursor.return_value.execute.call_count == 5

    @patch("summary_pipeline.__main__.configure_logging")
    @patch("summary_pipeline.__main__.load_dotenv")
    @patch("summary_pipeline.__main__.connect")
    def test_failed_status_exits_one(self, mock_connect, mock_dotenv, mock_logging):
        mock_connect.return_value = MagicMock()
        with patch("summary_pipeline.__main__._run", self._run_returning("failed")):
            assert main([]) == 1


class TestConfigureLogging:

    def test_noisy_libraries_quieted(self):
        root = logging.getLogger()
        saved_level, saved_handlers = root.level, list(root.handlers)
        try:
            configure_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            for name in NOISY_LIBS:
                assert logging.getLogger(name).level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
