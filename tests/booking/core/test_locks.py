import threading
import time

from booking.core.locks import KeyedLocks


def test_hold_releases_and_forgets_keys() -> None:
    locks = KeyedLocks()

    with locks.hold('slot:a', 'user:1'):
        assert len(locks) == 2

    assert len(locks) == 0


def test_hold_releases_keys_when_body_raises() -> None:
    locks = KeyedLocks()

    try:
        with locks.hold('slot:a'):
            raise ValueError('boom')
    except ValueError:
        pass

    with locks.hold('slot:a'):
        assert len(locks) == 1


def test_same_key_is_held_by_one_thread_at_a_time() -> None:
    locks = KeyedLocks()
    active = 0
    peak = 0
    counter_lock = threading.Lock()

    def worker() -> None:
        nonlocal active, peak
        with locks.hold('slot:2030-01-07T09:00'):
            with counter_lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with counter_lock:
                active -= 1

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert peak == 1
    assert len(locks) == 0


def test_different_keys_do_not_block_each_other() -> None:
    locks = KeyedLocks()
    entered = threading.Event()
    release = threading.Event()

    def hold_first_key() -> None:
        with locks.hold('slot:a'):
            entered.set()
            release.wait(timeout=5)

    holder = threading.Thread(target=hold_first_key)
    holder.start()
    assert entered.wait(timeout=5)

    acquired = threading.Event()

    def take_other_key() -> None:
        with locks.hold('slot:b'):
            acquired.set()

    other = threading.Thread(target=take_other_key)
    other.start()
    try:
        assert acquired.wait(timeout=5)
    finally:
        release.set()
        holder.join()
        other.join()


def test_overlapping_key_sets_in_opposite_order_do_not_deadlock() -> None:
    locks = KeyedLocks()
    done = []

    def worker(keys) -> None:
        for _ in range(50):
            with locks.hold(*keys):
                pass
        done.append(keys)

    threads = [
        threading.Thread(target=worker, args=(('slot:a', 'user:1'),)),
        threading.Thread(target=worker, args=(('user:1', 'slot:a'),)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(done) == 2
