from timetabler.services.scheduling_types import ClassInfo, SchedulingSnapshot
from timetabler.services import snapshot_cache as snapshot_cache_module
from timetabler.services.snapshot_cache import SnapshotCache


def snapshot(school_id=1):
    return SchedulingSnapshot(school_id=school_id, classes=(ClassInfo(class_id=1),), assignments=())


def test_hit_is_keyed_by_school_and_scope():
    cache = SnapshotCache(ttl_seconds=30)
    stored = snapshot()
    cache.put(stored, (1,))

    assert cache.get(1, (1,)) is stored
    assert cache.get(1, None) is None
    assert cache.get(2, (1,)) is None


def test_entries_expire(monkeypatch):
    clock = [100.0]
    monkeypatch.setattr(snapshot_cache_module.time, "monotonic", lambda: clock[0])
    cache = SnapshotCache(ttl_seconds=30)
    cache.put(snapshot(), None)

    clock[0] += 31
    assert cache.get(1, None) is None


def test_invalidate_drops_every_scope_of_a_school():
    cache = SnapshotCache(ttl_seconds=30)
    cache.put(snapshot(1), None)
    cache.put(snapshot(1), (1,))
    other = snapshot(2)
    cache.put(other, None)

    cache.invalidate(1)

    assert cache.get(1, None) is None
    assert cache.get(1, (1,)) is None
    assert cache.get(2, None) is other


def test_zero_ttl_disables_caching():
    cache = SnapshotCache(ttl_seconds=0)
    cache.put(snapshot(), None)

    assert cache.enabled is False
    assert cache.get(1, None) is None
