from __future__ import annotations

from pathlib import Path

import pytest

from m365_admin.config import DEFAULT_DB_PATH, ENV_PREFIX, PROJECT_ROOT, AdminConfig, load_config

SETTINGS = (
    "DATABASE_URL",
    "OUTPUT_DIR",
    "LOG_DIR",
    "TENANT_ID",
    "CLIENT_ID",
    "CLIENT_SECRET",
    "GRAPH_TOKEN",
    "ORGANIZATION",
    "CERT_THUMBPRINT",
    "UPN",
    "POWERSHELL_PATH",
    "POLL_INTERVAL",
    "POLL_MAX_FAILURES",
    "LOG_LEVEL",
    "ENV",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores "unset" even for values load_dotenv adds
    for name in SETTINGS:
        monkeypatch.setenv(f"{ENV_PREFIX}{name}", "")
        monkeypatch.delenv(f"{ENV_PREFIX}{name}")


def test_defaults_without_env_file(tmp_path: Path):
    config = load_config(tmp_path / "missing.env")

    assert config.database_url == f"sqlite:///{DEFAULT_DB_PATH}"
    assert config.poll_interval_seconds == 10.0
    assert config.poll_max_failures == 5
    assert config.log_level == "INFO"
    assert config.env_name == "local"
    assert not config.has_app_credentials


def test_env_file_values(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                f"{ENV_PREFIX}DATABASE_URL=sqlite:///C:\\ledger\\runs.db",
                f"{ENV_PREFIX}OUTPUT_DIR=exports",
                f"{ENV_PREFIX}LOG_DIR={tmp_path / 'logs'}",
                f"{ENV_PREFIX}TENANT_ID=tenant",
                f"{ENV_PREFIX}CLIENT_ID=client",
                f"{ENV_PREFIX}CLIENT_SECRET=secret",
                f"{ENV_PREFIX}POLL_INTERVAL=2.5",
                f"{ENV_PREFIX}POLL_MAX_FAILURES=3",
                f"{ENV_PREFIX}LOG_LEVEL=debug",
                f"{ENV_PREFIX}UPN=  ",
            ]
        ),
        encoding="utf-8",
    )

    config = load_config(env_file)

    assert config.database_url == "sqlite:///C:/ledger/runs.db"
    assert config.output_dir == (PROJECT_ROOT / "exports").resolve()
    assert config.log_dir == (tmp_path / "logs").resolve()
    assert config.poll_interval_seconds == 2.5
    assert config.poll_max_failures == 3
    assert config.log_level == "DEBUG"
    assert config.user_principal_name is None
    assert config.has_app_credentials


def test_process_environment_wins_over_env_file(tmp_path: Path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(f"{ENV_PREFIX}ENV=from-file\n", encoding="utf-8")
    monkeypatch.setenv(f"{ENV_PREFIX}ENV", "from-process")

    assert load_config(env_file).env_name == "from-process"


def test_invalid_number_is_reported(tmp_path: Path, monkeypatch):
    monkeypatch.setenv(f"{ENV_PREFIX}POLL_MAX_FAILURES", "many")

    with pytest.raises(ValueError, match="POLL_MAX_FAILURES"):
        load_config(tmp_path / "missing.env")


def test_has_app_credentials_requires_all_three():
    assert not AdminConfig(tenant_id="t", client_id="c").has_app_credentials
    assert AdminConfig(tenant_id="t", client_id="c", client_secret="s").has_app_credentials
