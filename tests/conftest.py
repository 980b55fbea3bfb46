import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from services.db import DatabaseBackend  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PGHOST", raising=False)
    monkeypatch.delenv("PGDATABASE", raising=False)


@pytest.fixture
def db(tmp_path):
    backend = DatabaseBackend(database_path=str(tmp_path / "rfp_ingest.sqlite"), use_postgres=False)
    backend.ensure_schema()
    return backend
