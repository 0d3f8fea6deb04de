from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from m365_admin.config import AdminConfig
from m365_admin.db.models import Base
from m365_admin.services.polling import PollSettings
from m365_admin.services.powershell import PowerShellCommandError


@pytest.fixture()
def temp_config(tmp_path: Path) -> AdminConfig:
    data_dir = tmp_path / "data"
    output_dir = data_dir / "output"
    log_dir = data_dir / "logs"
    for directory in (output_dir, log_dir):
        directory.mkdir(parents=True, exist_ok=True)

    db_path = tmp_path / "m365_admin.db"
    return AdminConfig(
        database_url=f"sqlite:///{db_path}",
        output_dir=output_dir,
        log_dir=log_dir,
        tenant_id="00000000-0000-0000-0000-000000000001",
        client_id="11111111-1111-1111-1111-111111111111",
        client_secret="secret",
        organization="contoso.onmicrosoft.com",
        certificate_thumbprint="ABCDEF0123456789",
        poll_interval_seconds=0.0,
        env_name="test",
    )


@pytest.fixture()
def db_session(temp_config: AdminConfig) -> Iterator[Session]:
    engine = create_engine(temp_config.database_url, future=True)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def poll_settings(sleeps: list[float]) -> PollSettings:
    return PollSettings(
        interval_seconds=5.0,
        max_fetch_failures=2,
        transient_errors=(PowerShellCommandError,),
        sleep=sleeps.append,
    )
