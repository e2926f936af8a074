"""
Tests for the CLI interface.
"""
import json
import os
import shutil
import tempfile
from datetime import datetime
from unittest.mock import patch

from typer.testing import CliRunner

from draftstream.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app
from draftstream.core.ledger import UsageLedger
from draftstream.sdk.provider import ModelProvider, ProviderStream
from draftstream.storage.models import QuotaTier, UsageCategory
from draftstream.storage.repository import UsageRepository, initialize_schema

runner = CliRunner()


class _Stream(ProviderStream):
    def __init__(self, fragments):
        self._fragments = fragments

    async def fragments(self):
        for fragment in self._fragments:
            yield fragment


class _Provider(ModelProvider):
    def __init__(self, fragments=None, error=None):
        self._fragments = fragments or []
        self._error = error
        self.calls = 0

    async def invoke(self, messages, system_prompt, tier, temperature=None):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return _Stream(self._fragments)


class CLITestCase:
    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = UsageRepository(self.db_path)
        self.ledger = UsageLedger(self.repo)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def invoke(self, *args):
        return runner.invoke(app, ["--db", self.db_path, *args])

    def write_config(self, text: str) -> str:
        path = os.path.join(self.temp_dir, "config.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path


class TestCLI(CLITestCase):
    """Test CLI commands."""

    def test_no_command_shows_hint(self):
        result = self.invoke()

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self):
        db_path = os.path.join(self.temp_dir, "fresh.db")

        result = runner.invoke(app, ["--db", db_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(db_path)

    def test_missing_config_file(self):
        result = self.invoke("--config", os.path.join(self.temp_dir, "missing.yaml"), "init")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading config" in result.output

    def test_invalid_config_file(self):
        config_path = self.write_config("streaming:\n  retries: 3\n")

        result = self.invoke("--config", config_path, "init")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown streaming keys" in result.output

    def test_set_tier(self):
        result = self.invoke("set-tier", "user-1", "pro")

        assert result.exit_code == EXIT_CODE_PASS
        assert "user-1 is now on the pro tier" in result.output
        assert self.repo.get_user_tier("user-1") == QuotaTier.PRO

    def test_set_tier_rejects_unknown_tier(self):
        result = self.invoke("set-tier", "user-1", "platinum")

        assert result.exit_code != EXIT_CODE_PASS
        assert self.repo.get_user_tier("user-1") is None

    def test_quota_within_limits(self):
        self.ledger.track_usage("user-1", "gpt-3.5-turbo", 1000, 500)

        result = self.invoke("quota", "user-1")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Within quota" in result.output

    def test_quota_blocked(self):
        self.ledger.track_usage("user-1", "gpt-3.5-turbo", 9500, 0)

        result = self.invoke("quota", "user-1", "--estimated-tokens", "1000")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Blocked:" in result.output
        assert "Daily token limit exceeded (9500/10000)" in result.output

    def test_quota_overrides_from_config(self):
        self.ledger.track_usage("user-1", "gpt-3.5-turbo", 9500, 0)
        config_path = self.write_config("quotas:\n  free:\n    daily_tokens: 50000\n")

        result = self.invoke("--config", config_path, "quota", "user-1", "-e", "1000")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Within quota" in result.output

    def test_analytics(self):
        self.ledger.track_usage("user-1", "gpt-3.5-turbo", 1000, 500)
        self.ledger.track_usage("user-1", "gpt-4", 1000, 500, UsageCategory.IMPROVEMENT)

        result = self.invoke("analytics", "user-1", "--period", "week")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage for user-1 (week)" in result.output
        assert "Requests: 2" in result.output
        assert "Total tokens: 3,000" in result.output
        assert "Average tokens/request: 1,500" in result.output

    def test_analytics_rejects_unknown_period(self):
        result = self.invoke("analytics", "user-1", "--period", "decade")

        assert result.exit_code != EXIT_CODE_PASS

    def test_projection(self):
        self.ledger.track_usage("user-1", "gpt-4", 10000, 5000)

        result = self.invoke("projection", "user-1")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Cost projection for user-1" in result.output
        assert "Projected month:" in result.output
        assert "Trend:" in result.output


class TestExportCommand(CLITestCase):
    """Test the export command."""

    def setup_method(self):
        super().setup_method()
        self.ledger.track_usage(
            "user-1", "gpt-3.5-turbo", 1000, 500, timestamp=datetime(2026, 3, 10, 23, 30)
        )
        self.ledger.track_usage(
            "user-1", "gpt-4", 100, 50, timestamp=datetime(2026, 3, 11, 9, 0)
        )

    def test_csv_to_stdout(self):
        result = self.invoke("export", "user-1", "--start", "2026-03-10", "--end", "2026-03-10")

        assert result.exit_code == EXIT_CODE_PASS
        lines = result.stdout.strip().splitlines()
        assert lines[0] == "Date,Model,Category,Input Tokens,Output Tokens,Total Tokens,Cost"
        assert len(lines) == 2
        assert lines[1].startswith("2026-03-10T23:30:00,gpt-3.5-turbo,chat,1000,500,1500,")

    def test_json_to_stdout(self):
        result = self.invoke(
            "export", "user-1", "--start", "2026-03-10", "--end", "2026-03-11", "--format", "json"
        )

        assert result.exit_code == EXIT_CODE_PASS
        data = json.loads(result.stdout)
        assert data["summary"]["request_count"] == 2
        assert data["summary"]["total_tokens"] == 1650
        assert [r["model"] for r in data["records"]] == ["gpt-3.5-turbo", "gpt-4"]

    def test_export_to_file(self):
        output = os.path.join(self.temp_dir, "out.csv")

        result = self.invoke(
            "export", "user-1", "--start", "2026-03-11", "--end", "2026-03-11", "-o", output
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Exported 1 records" in result.output
        with open(output, encoding='utf-8') as f:
            content = f.read()
        assert content.startswith("Date,Model")
        assert "gpt-4" in content

    def test_invalid_date(self):
        result = self.invoke("export", "user-1", "--start", "10/03/2026", "--end", "2026-03-10")

        assert result.exit_code != EXIT_CODE_PASS


class TestScoreCommand:
    """Test the score command."""

    def test_score_short_response(self):
        result = runner.invoke(app, ["score", "The sky looked grey.", "--platform", "twitter"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Quality score:" in result.output
        assert "Needs improvement: completeness" in result.output
        assert "Suggestions" in result.output

    def test_score_with_goal(self):
        result = runner.invoke(app, [
            "score", "Share your thoughts below! What do you think?",
            "--goal", "engagement", "--prompt", "Write an engaging question",
        ])

        assert result.exit_code == EXIT_CODE_PASS
        assert "engagement" in result.output

    def test_score_rejects_unknown_goal(self):
        result = runner.invoke(app, ["score", "text", "--goal", "virality"])

        assert result.exit_code != EXIT_CODE_PASS


class TestChatCommand(CLITestCase):
    """Test the chat command with the provider patched out."""

    def test_chat_streams_answer(self):
        provider = _Provider(["Hello", " world"])

        with patch('draftstream.cli.main.OpenAIProvider', return_value=provider):
            result = self.invoke("chat", "Say hello", "--user", "user-1", "--platform", "twitter")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Hello world" in result.output
        assert "(standard," in result.output
        assert provider.calls == 1
        records = self.repo.fetch_usage_records("user-1")
        assert len(records) == 1
        assert records[0].model == "gpt-4-turbo-preview"

    def test_chat_tier_option(self):
        provider = _Provider(["Quick"])

        with patch('draftstream.cli.main.OpenAIProvider', return_value=provider):
            result = self.invoke("chat", "Hi", "--user", "user-1", "--tier", "fast")

        assert result.exit_code == EXIT_CODE_PASS
        assert "(fast," in result.output
        assert self.repo.fetch_usage_records("user-1")[0].model == "gpt-3.5-turbo"

    def test_chat_provider_failure(self):
        provider = _Provider(error=ConnectionError("provider unreachable"))
        config_path = self.write_config("streaming:\n  max_retries: 1\n  retry_delay: 0.01\n")

        with patch('draftstream.cli.main.OpenAIProvider', return_value=provider):
            result = self.invoke("--config", config_path, "chat", "Hi", "--user", "user-1")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "provider unreachable" in result.output
        assert provider.calls == 1

    def test_chat_quota_exceeded(self):
        self.ledger.track_usage("user-1", "gpt-3.5-turbo", 9500, 0)
        provider = _Provider(["never"])

        with patch('draftstream.cli.main.OpenAIProvider', return_value=provider):
            result = self.invoke("chat", "Hi", "--user", "user-1")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Daily token limit exceeded" in result.output
        assert provider.calls == 0
