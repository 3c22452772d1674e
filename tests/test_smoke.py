import json
import os
from unittest.mock import patch

from typer.testing import CliRunner

from ember.cli import app
from ember.config import Settings
from ember.memory.dedup import save_candidate
from ember.tenant import tenant_session

runner = CliRunner()

EXTRACTION = json.dumps({
    "memories": [
        {
            "factualContent": "Starting a job at a climbing gym",
            "category": "work",
            "importance": 5,
            "verbatimText": "I start at the climbing gym next month",
        },
        {
            "factualContent": "Partner Sam is supportive",
            "category": "relationships",
            "importance": 4,
            "verbatimText": "my partner Sam is really supportive",
        },
    ]
})


def test_settings_load():
    """Defaults load without any environment."""
    os.environ["OPENAI_API_KEY"] = "sk-test-dummy-key"
    try:
        settings = Settings()
        assert settings.OPENAI_API_KEY.get_secret_value() == "sk-test-dummy-key"
        assert settings.JOB_RETRIES == 3
        assert settings.MIN_CAPTURE_CHARS == 100
        assert settings.DEFAULT_TOKEN_BUDGET == 8000
    finally:
        del os.environ["OPENAI_API_KEY"]


def test_cli_doctor(tmp_path):
    with patch("ember.cli.settings") as mock_settings:
        mock_settings.DATA_DIR = tmp_path
        mock_settings.OPENAI_API_KEY.get_secret_value.return_value = "sk-test-dummy-key"
        mock_settings.OPENAI_MODEL_EXTRACTION = "gpt-4o-2024-08-06"
        mock_settings.OPENAI_MODEL_VISION = "gpt-4o-mini"

        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 0
        assert "Ember Doctor" in result.stdout
        assert "OPENAI_API_KEY:           ✅ Set" in result.stdout


def test_cli_db_init(engine):
    result = runner.invoke(app, ["db", "init"])
    assert result.exit_code == 0
    assert "Database initialized" in result.stdout


def test_cli_capture_submit(tmp_path, profile_a, conversation):
    text_file = tmp_path / "chat.txt"
    text_file.write_text(conversation, encoding="utf-8")

    with patch("ember.ingest.extraction.get_chat_completion", return_value=EXTRACTION):
        result = runner.invoke(app, ["capture", "submit", str(profile_a), "--text", str(text_file)])

    assert result.exit_code == 0, result.stdout
    assert "queued" in result.stdout
    assert "Status:   completed" in result.stdout
    assert "Memories: 2" in result.stdout


def test_cli_capture_submit_rejects_short_text(tmp_path, profile_a):
    text_file = tmp_path / "chat.txt"
    text_file.write_text("hi", encoding="utf-8")
    result = runner.invoke(app, ["capture", "submit", str(profile_a), "--text", str(text_file)])
    assert result.exit_code == 1
    assert "too short" in result.stdout


def test_cli_capture_status_unknown(profile_a):
    result = runner.invoke(app, ["capture", "status", str(profile_a), str(profile_a)])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_cli_search_and_wake(profile_a, candidate):
    with tenant_session(profile_a) as session:
        save_candidate(session, profile_a, None, candidate("Works as a nurse", importance=5))
        save_candidate(session, profile_a, None, candidate("Plays the cello", category="hobbies"))

    result = runner.invoke(app, ["memories", "search", str(profile_a), "nurse"])
    assert result.exit_code == 0
    assert "Found 1 results" in result.stdout
    assert "[work ★5] Works as a nurse" in result.stdout

    result = runner.invoke(app, ["memories", "wake", str(profile_a), "--category", "hobbies"])
    assert result.exit_code == 0
    assert "Plays the cello" in result.stdout
    assert "Works as a nurse" not in result.stdout

    result = runner.invoke(app, ["memories", "wake", str(profile_a), "--budget", "10"])
    assert result.exit_code == 1


def test_cli_purge(engine):
    result = runner.invoke(app, ["purge", "--days", "30"])
    assert result.exit_code == 0
    assert "Purged 0 memories" in result.stdout
