# pylint: disable=redefined-outer-name
"""
Unit tests for the config module and the command line entry point.
"""

import signal
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from news_monitor.core.config import ConfigLoader, EmailSettings, MonitorConfig, PushMode
from news_monitor.core.exceptions import ConfigError
from news_monitor.core.store_news import NewsStorage
from news_monitor.core.types import NewsItem
from news_monitor.main import main, run

# --- Fixtures ---


@pytest.fixture
def environ() -> dict[str, str]:
    """Provide a complete environment."""
    return {
        "SMTP_HOST": "smtp.example.com",
        "SMTP_PORT": "465",
        "SMTP_USER": "bot@example.com",
        "SMTP_PASSWORD": "secret",
        "TO_EMAIL": "reader@example.com",
    }


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Leave pytest's log handlers alone when the entry point runs."""
    monkeypatch.setattr("news_monitor.main.setup_logging", lambda *args, **kwargs: None)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Undo whatever a loaded .env file puts into the environment."""
    for key in ("DATA_FILE", "NEWS_URL"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


# --- Tests for ConfigLoader ---


def test_load_applies_defaults(environ: dict[str, str]) -> None:
    config = ConfigLoader().load(environ)

    assert config.email.smtp_port == 465
    assert config.email.sender == "bot@example.com"
    assert config.check_interval == "15"
    assert config.push_mode is PushMode.REAL_TIME
    assert config.batch_time == "18:00"
    assert config.timezone == "Asia/Shanghai"


def test_load_reads_optional_settings(environ: dict[str, str]) -> None:
    environ.update(
        {
            "FROM_EMAIL": "news@example.com",
            "CHECK_INTERVAL": "*/5 * * * *",
            "PUSH_MODE": "batch",
            "BATCH_TIME": "08:30",
            "DATA_FILE": "/tmp/seen.json",
            "LOG_LEVEL": "debug",
        }
    )
    config = ConfigLoader().load(environ)

    assert config.email.sender == "news@example.com"
    assert config.check_interval == "*/5 * * * *"
    assert config.push_mode is PushMode.BATCH
    assert config.batch_time == "08:30"
    assert config.data_file == "/tmp/seen.json"
    assert config.log_level == "DEBUG"


def test_load_lists_every_missing_setting() -> None:
    with pytest.raises(ConfigError) as exc_info:
        ConfigLoader().load({"SMTP_HOST": "smtp.example.com"})

    assert exc_info.value.missing == ["SMTP_PORT", "SMTP_USER", "SMTP_PASSWORD", "TO_EMAIL"]


@pytest.mark.parametrize(
    "key, value",
    [
        ("SMTP_PORT", "not-a-port"),
        ("SMTP_PORT", "70000"),
        ("PUSH_MODE", "hourly"),
        ("TIMEZONE", "Mars/Olympus"),
    ],
)
def test_load_rejects_invalid_values(environ: dict[str, str], key: str, value: str) -> None:
    environ[key] = value
    with pytest.raises(ConfigError):
        ConfigLoader().load(environ)


def test_warnings_flag_suspicious_values(environ: dict[str, str]) -> None:
    environ.update({"TO_EMAIL": "not-an-address", "PUSH_MODE": "batch", "BATCH_TIME": "6pm"})
    warnings = ConfigLoader.warnings(ConfigLoader().load(environ))

    assert any("TO_EMAIL" in warning for warning in warnings)
    assert any("BATCH_TIME" in warning for warning in warnings)


# --- Tests for the entry point ---


def test_run_refuses_to_start_without_config(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    for key in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASSWORD", "TO_EMAIL"):
        monkeypatch.delenv(key, raising=False)
    empty_env = tmp_path / ".env"
    empty_env.write_text("", encoding="utf-8")

    assert main(["--env-file", str(empty_env), "run"]) == 1


def test_status_and_cleanup_commands(
    tmp_path: Path, capsys: pytest.CaptureFixture[Any]
) -> None:
    data_file = str(tmp_path / "news.json")

    assert main(["status", "--data-file", data_file]) == 0
    assert "Stored news items: 0" in capsys.readouterr().out

    assert main(["cleanup", "--data-file", data_file, "--keep", "10"]) == 0
    assert "Removed 0 old news items" in capsys.readouterr().out


def test_status_reads_data_file_from_env_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[Any]
) -> None:
    """Store commands use DATA_FILE from .env without needing SMTP settings."""
    # --- Arrange ---
    data_file = tmp_path / "seen.json"
    NewsStorage(str(data_file)).commit(
        [
            NewsItem(title=f"Stored headline {i}", link=f"https://www.gov.cn/yaowen/{i}.htm")
            for i in range(3)
        ]
    )
    env_file = tmp_path / ".env"
    env_file.write_text(f"DATA_FILE={data_file}\n", encoding="utf-8")
    workdir = tmp_path / "workdir"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    # --- Act ---
    status_code = main(["--env-file", str(env_file), "status"])

    # --- Assert ---
    assert status_code == 0
    assert "Stored news items: 3" in capsys.readouterr().out
    assert not (workdir / "data" / "news.json").exists()

    assert main(["--env-file", str(env_file), "cleanup", "--keep", "1"]) == 0
    assert NewsStorage(str(data_file)).stats().total_count == 1


# --- Tests for run ---


@pytest.fixture
def run_config(tmp_path: Path) -> MonitorConfig:
    return MonitorConfig(
        email=EmailSettings(
            smtp_host="smtp.example.com",
            smtp_user="bot@example.com",
            smtp_password="secret",
            to_email="reader@example.com",
        ),
        push_mode=PushMode.BATCH,
        data_file=str(tmp_path / "news.json"),
    )


@pytest.fixture
def fake_scheduler(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Replace the scheduler and deliver a signal as soon as it starts."""
    handlers = {}
    monkeypatch.setattr(
        "news_monitor.main.signal.signal",
        lambda signum, handler: handlers.__setitem__(signum, handler),
    )
    scheduler = MagicMock()
    scheduler.batch_queue = [
        NewsItem(title="Pending batch headline", link="https://www.gov.cn/yaowen/1.htm")
    ]
    scheduler.flush_batch_queue.return_value = True
    scheduler.handlers = handlers
    monkeypatch.setattr("news_monitor.main.NewsScheduler", lambda config: scheduler)
    return scheduler


def test_run_flushes_batch_on_sigint(
    run_config: MonitorConfig, fake_scheduler: MagicMock
) -> None:
    fake_scheduler.start.side_effect = lambda: fake_scheduler.handlers[signal.SIGINT](
        signal.SIGINT, None
    )

    assert run(run_config) == 0
    fake_scheduler.stop.assert_called_once()
    fake_scheduler.flush_batch_queue.assert_called_once()


def test_run_skips_flush_on_sigterm(
    run_config: MonitorConfig, fake_scheduler: MagicMock
) -> None:
    fake_scheduler.start.side_effect = lambda: fake_scheduler.handlers[signal.SIGTERM](
        signal.SIGTERM, None
    )

    assert run(run_config) == 0
    fake_scheduler.stop.assert_called_once()
    fake_scheduler.flush_batch_queue.assert_not_called()
