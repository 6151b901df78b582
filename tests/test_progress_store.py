import aiosqlite
import pytest

from persona_panel.models import JobProgress, StructuredAnswer
from persona_panel.progress_store import (
    MemoryProgressStore,
    SQLiteProgressStore,
    _memory_stores,
    make_progress_store,
)

pytestmark = pytest.mark.asyncio


class FakeClock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _progress(done: int = 1) -> JobProgress:
    return JobProgress(
        personas_total=3,
        personas_done_count=done,
        batch_index=1,
        batches_total=2,
        completed_answers=[StructuredAnswer(persona_id="p1", question_id="A3", score=5)],
        errors=["Bob (p2): timeout"],
        fingerprint="abc",
    )


async def test_memory_save_and_load():
    clock = FakeClock()
    store = MemoryProgressStore(clock=clock)
    await store.save(_progress())
    loaded = await store.load()
    assert loaded.personas_done_count == 1
    assert loaded.completed_answers[0].score == 5
    assert loaded.saved_at_epoch_millis == clock.now


async def test_memory_snapshot_expires():
    clock = FakeClock()
    store = MemoryProgressStore(ttl_seconds=60, clock=clock)
    await store.save(_progress())
    clock.now += 61_000
    assert await store.load() is None


async def test_memory_load_returns_copy():
    store = MemoryProgressStore()
    await store.save(_progress())
    loaded = await store.load()
    loaded.completed_answers.clear()
    assert len((await store.load()).completed_answers) == 1


async def test_sqlite_save_and_reload(tmp_path):
    db_path = str(tmp_path / "progress.db")
    await SQLiteProgressStore("user-1:s1", db_path=db_path).save(_progress(done=2))

    reloaded = await SQLiteProgressStore("user-1:s1", db_path=db_path).load()
    assert reloaded.personas_done_count == 2
    assert reloaded.errors == ["Bob (p2): timeout"]
    assert reloaded.fingerprint == "abc"


async def test_sqlite_keys_are_isolated(tmp_path):
    db_path = str(tmp_path / "progress.db")
    await SQLiteProgressStore("user-1:s1", db_path=db_path).save(_progress())
    assert await SQLiteProgressStore("user-2:s1", db_path=db_path).load() is None


async def test_sqlite_clear(tmp_path):
    store = SQLiteProgressStore("user-1:s1", db_path=str(tmp_path / "progress.db"))
    await store.save(_progress())
    await store.clear()
    assert await store.load() is None


async def test_sqlite_expired_row_is_discarded(tmp_path):
    clock = FakeClock()
    store = SQLiteProgressStore("k", db_path=str(tmp_path / "progress.db"), ttl_seconds=10, clock=clock)
    await store.save(_progress())
    clock.now += 11_000
    assert await store.load() is None
    clock.now -= 11_000
    assert await store.load() is None


async def test_sqlite_corrupt_row_is_treated_as_absent(tmp_path):
    db_path = str(tmp_path / "progress.db")
    store = SQLiteProgressStore("k", db_path=db_path)
    await store.save(_progress())
    async with aiosqlite.connect(db_path) as db:
        await db.execute("UPDATE job_progress SET progress_json = '{not json' WHERE store_key = 'k'")
        await db.commit()
    assert await store.load() is None


async def test_factory_memory_backend_reuses_instance():
    _memory_stores.clear()
    a = make_progress_store("user-1:s1", backend="memory")
    b = make_progress_store("user-1:s1", backend="memory")
    c = make_progress_store("user-2:s1", backend="memory")
    assert a is b
    assert a is not c


async def test_factory_reads_backend_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("PROGRESS_BACKEND", "sqlite")
    store = make_progress_store("k", db_path=str(tmp_path / "p.db"))
    assert isinstance(store, SQLiteProgressStore)


async def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        make_progress_store("k", backend="redis")
