import pytest
import pytest_asyncio

from aiolite import config
from aiolite import database as database_module
from aiolite.database import Database
from aiolite.registry import ConnectionRegistry


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Point config at a per-test file and reset global flags.

    Tests that need settings write tmp_path / "aiolite.yaml".
    """
    monkeypatch.setenv(config.ENV_VAR, str(tmp_path / "aiolite.yaml"))
    monkeypatch.setattr(database_module, "_verbose", False)
    config.clear_cache()
    yield tmp_path / "aiolite.yaml"
    config.clear_cache()


@pytest_asyncio.fixture
async def registry():
    """Fresh connection registry, closed on teardown."""
    reg = ConnectionRegistry()
    yield reg
    await reg.close_all()


@pytest_asyncio.fixture
async def db(tmp_path):
    """Open handle on tmp_path/test.db with table t(id, v)."""
    handle = await Database.connect(tmp_path / "test.db")
    await handle.exec("CREATE TABLE t (id INTEGER PRIMARY KEY, v INTEGER)")
    yield handle
    if handle.is_open:
        await handle.close()
