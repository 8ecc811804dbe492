from __future__ import annotations

import threading
from pathlib import Path

import pytest

from feedsync.infra.cache.db import getCacheDbPath, openCacheDb
from feedsync.infra.cache.sqlite_engine import SqliteEngine


def _build_engine(tmp_path: Path) -> SqliteEngine:
    engine = SqliteEngine(openCacheDb(getCacheDbPath(str(tmp_path / "cache"))))
    engine.execute("CREATE TABLE t (k TEXT PRIMARY KEY, v INTEGER)")
    return engine


def test_transaction_rolls_back_on_error(tmp_path: Path):
    engine = _build_engine(tmp_path)

    with pytest.raises(RuntimeError):
        with engine.transaction():
            engine.execute("INSERT INTO t(k, v) VALUES (?, ?)", ("a", 1))
            raise RuntimeError("boom")

    assert engine.fetchone("SELECT v FROM t WHERE k = ?", ("a",)) is None


def test_execute_returns_rowcount_and_fetchcolumn_reads_first_column(tmp_path: Path):
    engine = _build_engine(tmp_path)
    with engine.transaction():
        for i in range(3):
            engine.execute("INSERT INTO t(k, v) VALUES (?, ?)", (f"k{i}", i))

    assert engine.execute("UPDATE t SET v = v + 10 WHERE v >= ?", (1,)) == 2
    assert engine.fetchcolumn("SELECT k FROM t ORDER BY k") == ["k0", "k1", "k2"]


def test_writes_from_worker_threads_are_serialized(tmp_path: Path):
    engine = _build_engine(tmp_path)

    def write(prefix: str) -> None:
        for i in range(20):
            with engine.transaction():
                engine.execute("INSERT INTO t(k, v) VALUES (?, ?)", (f"{prefix}{i}", i))

    threads = [threading.Thread(target=write, args=(p,)) for p in ("a", "b", "c")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert engine.fetchone("SELECT COUNT(*) FROM t")[0] == 60
