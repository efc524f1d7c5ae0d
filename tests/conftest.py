# tests/conftest.py
import pytest

from hrm_keys.config import load_config
from hrm_keys.crypto import CryptoProvider
from hrm_keys.lifecycle import KeyLifecycleManager
from hrm_keys.storage import InMemoryStorage, SQLiteStorage


@pytest.fixture
def config():
    # Lowest allowed PBKDF2 cost keeps the suite fast
    return load_config({"iterations": 10_000})


@pytest.fixture
def provider(config):
    return CryptoProvider(config)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = InMemoryStorage()
    else:
        s = SQLiteStorage(str(tmp_path / "keys.db"))
    yield s
    s.close()


@pytest.fixture
def manager(store, config):
    m = KeyLifecycleManager(store, config)
    yield m
    m.close()
