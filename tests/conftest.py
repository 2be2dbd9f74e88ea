from unittest.mock import MagicMock, patch

import pytest

from officehub import config
from officehub.backend import auth, feed, tables
from officehub.lib import paths, store


def _reset_all():
    store._reset_for_testing()
    feed._reset_for_testing()
    tables._reset_for_testing()
    auth._reset_for_testing()
    config._clear_cache()


@pytest.fixture
def test_office(monkeypatch, tmp_path):
    """Isolated data directory and database per test.

    Provides:
    - Temporary data dir instead of ~/.officehub
    - Fresh store, feed, column cache and config cache (setup + teardown reset)
    - Cheap password hashing

    ALL tests touching the store must accept this fixture.
    """
    _reset_all()

    data_dir = tmp_path / "officehub"
    data_dir.mkdir()
    monkeypatch.setattr(paths, "data_dir", lambda: data_dir)
    monkeypatch.setattr(auth, "_ITERATIONS", 1000)

    store.ensure()

    yield data_dir

    _reset_all()


@pytest.fixture
def write_config(test_office):
    """Write config.yaml into the isolated data dir and reload it."""

    def _write(text: str) -> None:
        (test_office / "config.yaml").write_text(text)
        config._clear_cache()

    return _write


@pytest.fixture
def org(test_office):
    return auth.create_organization("Acme Accounting")


@pytest.fixture
def users(org):
    """Three members of one organization: A, B, C."""
    return {
        "a": auth.sign_up("alice@example.com", "password-a", "Alice", org),
        "b": auth.sign_up("bob@example.com", "password-b", "Bob", org),
        "c": auth.sign_up("carol@example.com", "password-c", "Carol", org),
    }


@pytest.fixture
def alice(users):
    return users["a"]


@pytest.fixture
def bob(users):
    return users["b"]


@pytest.fixture
def carol(users):
    return users["c"]


@pytest.fixture
def outsider(test_office):
    other_org = auth.create_organization("Other Firm")
    return auth.sign_up("olga@example.com", "password-o", "Olga", other_org)


@pytest.fixture
def mock_db():
    """Mock store.ensure connection for unit tests."""
    mock_conn = MagicMock()
    tables._reset_for_testing()
    with patch("officehub.lib.store.ensure") as mock_ensure:
        mock_ensure.return_value = mock_conn
        yield mock_conn
    tables._reset_for_testing()

