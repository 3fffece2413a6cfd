import sys
from pathlib import Path

import pytest

# To allow imports of aiquery and core without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from aiquery.adapters.cache import clear_session_cache
from core.config import QuerySettings, reset_settings


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch):
    """Every test starts with an empty session cache and freshly loaded settings."""
    for name in ("AIQUERY_CONFIG_PATH", "AIQUERY_DEFAULT_PROVIDER", "AIQUERY_OPENAI_API_KEY", "AIQUERY_GROQ_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    clear_session_cache()
    reset_settings()
    yield
    clear_session_cache()
    reset_settings()


@pytest.fixture
def fast_settings():
    """Short deadlines and no retry pause so failure paths run quickly."""
    return QuerySettings(
        _env_file=None,
        DEFAULT_TIMEOUT=1.0,
        STREAM_TIMEOUT=1.0,
        DEFAULT_RETRY=1,
        STREAM_RETRY_DELAY=0.0,
    )
