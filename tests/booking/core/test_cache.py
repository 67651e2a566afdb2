from booking.core.cache import RevisionedCache


def test_value_is_computed_once_per_revision() -> None:
    cache = RevisionedCache(ttl_seconds=60)
    calls = []

    def compute():
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute('monday', compute) == 1
    assert cache.get_or_compute('monday', compute) == 1
    assert len(calls) == 1


def test_bump_invalidates_every_entry() -> None:
    cache = RevisionedCache(ttl_seconds=60)
    cache.get_or_compute('monday', lambda: 'old')
    cache.get_or_compute('tuesday', lambda: 'old')

    revision = cache.bump()

    assert revision == cache.revision
    assert cache.get_or_compute('monday', lambda: 'new') == 'new'
    assert cache.get_or_compute('tuesday', lambda: 'new') == 'new'


def test_zero_ttl_disables_caching() -> None:
    cache = RevisionedCache(ttl_seconds=0)
    calls = []

    cache.get_or_compute('monday', lambda: calls.append(1))
    cache.get_or_compute('monday', lambda: calls.append(1))

    assert len(calls) == 2


def test_value_computed_across_a_write_is_not_stored() -> None:
    cache = RevisionedCache(ttl_seconds=60)

    def compute_while_writing():
        cache.bump()
        return 'stale'

    assert cache.get_or_compute('monday', compute_while_writing) == 'stale'
    assert cache.get_or_compute('monday', lambda: 'fresh') == 'fresh'


def test_expired_entries_are_recomputed(monkeypatch) -> None:
    cache = RevisionedCache(ttl_seconds=30)
    clock = [1000.0]
    monkeypatch.setattr('booking.core.cache.time.monotonic', lambda: clock[0])

    cache.get_or_compute('monday', lambda: 'first')
    clock[0] += 31

    assert cache.get_or_compute('monday', lambda: 'second') == 'second'


def test_storing_a_value_drops_expired_entries(monkeypatch) -> None:
    cache = RevisionedCache(ttl_seconds=30)
    clock = [1000.0]
    monkeypatch.setattr('booking.core.cache.time.monotonic', lambda: clock[0])

    for day in ('2030-01-07', '2030-01-08', '2030-01-09'):
        cache.get_or_compute(day, lambda: 'slots')
    assert len(cache) == 3

    clock[0] += 31
    cache.get_or_compute('2030-01-10', lambda: 'slots')

    assert len(cache) == 1
