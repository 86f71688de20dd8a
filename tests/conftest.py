# tests/conftest.py
import os
import tempfile

# config.py reads these at import time; keep logs, the state DB and exports out of the repo
_TMP = tempfile.mkdtemp(prefix="backoffice-tests-")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("STATE_DB_PATH", os.path.join(_TMP, "state.db"))
os.environ.setdefault("EXPORT_DIR", os.path.join(_TMP, "exports"))
os.environ["ADMIN_EMAILS"] = ""

import pytest

from db import StateDB
from fakes import FakeCafe24


@pytest.fixture
def state_db(tmp_path):
    db = StateDB(str(tmp_path / "state.db"))
    db.init()
    return db


@pytest.fixture
def no_sleep():
    calls = []
    return calls, calls.append


@pytest.fixture
def fake_client():
    return FakeCafe24()
