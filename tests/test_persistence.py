import json
import multiprocessing
import sys
import threading
from datetime import date

import pytest

from homeplan.events import RecordingNotifier
from homeplan.models import Home
from homeplan.persistence import Store
from homeplan.planner import Planner


def _add_punch_items(db_path: str, count: int) -> None:
    planner = Planner(Store(db_path), notifier=RecordingNotifier())
    for i in range(count):
        planner.add_punch_item("H-1", f"Nail pop {i}")


def _store_with_home(tmp_path) -> Store:
    store = Store(tmp_path / "plan.json")
    with store.transaction() as db:
        db.homes["H-1"] = Home("H-1", "Lot 1", start_date=date(2026, 3, 2))
    return store


def test_generate_id():
    assert Store.generate_id("HT", []) == "HT-1"
    assert Store.generate_id("HT", ["HT-2", "HT-10", "H-40", "HT-x"]) == "HT-11"


def test_failed_transaction_leaves_file_untouched(tmp_path):
    store = _store_with_home(tmp_path)
    before = store.db_path.read_bytes()

    with pytest.raises(RuntimeError):
        with store.transaction() as db:
            db.homes["H-1"].label = "Lot 99"
            raise RuntimeError("boom")

    assert store.db_path.read_bytes() == before
    assert store.load().homes["H-1"].label == "Lot 1"


def test_concurrent_threads_do_not_lose_updates(tmp_path):
    store = _store_with_home(tmp_path)
    threads = [
        threading.Thread(target=_add_punch_items, args=(str(store.db_path), 20))
        for _ in range(3)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.load().punch_items) == 60


@pytest.mark.skipif(sys.platform == "win32", reason="fork start method is POSIX only")
def test_concurrent_processes_do_not_lose_updates(tmp_path):
    store = _store_with_home(tmp_path)
    ctx = multiprocessing.get_context("fork")
    workers = [
        ctx.Process(target=_add_punch_items, args=(str(store.db_path), 40))
        for _ in range(2)
    ]
    for w in workers:
        w.start()
    for w in workers:
        w.join(timeout=120)
        assert w.exitcode == 0

    raw = json.loads(store.db_path.read_text())
    assert len(raw["punch_items"]) == 80
    assert sorted(raw["punch_items"]) == sorted(f"P-{n}" for n in range(1, 81))
