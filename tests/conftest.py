import pytest

from auq_sessions.store import SessionStore

from helpers.settings import make_settings


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def store(settings):
    settings.base_dir.mkdir(parents=True, exist_ok=True)
    return SessionStore(settings)
