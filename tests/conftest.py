from __future__ import annotations

import os
import sys

import pytest


PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from database.db_manager import SecretStore  # noqa: E402


@pytest.fixture
def store(tmp_path) -> SecretStore:
    return SecretStore(str(tmp_path / "secrets.db"))
