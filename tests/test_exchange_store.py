import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth_relay.errors import CodeCollision
from auth_relay.exchange_store import ExchangeStore

ORIGIN = "chrome-extension://relaytestextensionid"


def test_issue_then_redeem_once(clock):
    store = ExchangeStore(ttl_seconds=300, clock=clock)
    code = store.issue({"access_token": "abc"}, 300)

    assert store.redeem(code) == {"access_token": "abc"}
    assert store.redeem(code) is None
    assert len(store) == 0


def test_never_issued_code_is_not_found(clock):
    store = ExchangeStore(clock=clock)
    assert store.redeem("never-issued") is None
    assert store.redeem("") is None


def test_codes_are_long_and_unique(clock):
    store = ExchangeStore(clock=clock)
    codes = {store.issue({"access_token": str(i)}) for i in range(200)}
    assert len(codes) == 200
    assert all(len(c) >= 43 for c in codes)


def test_short_ttl_expires_in_real_time():
    store = ExchangeStore()
    code = store.issue({"access_token": "abc"}, 0.001)
    time.sleep(0.05)
    assert store.redeem(code) is None
    assert code not in store


def test_live_until_deadline_then_gone(clock):
    store = ExchangeStore(ttl_seconds=300, grace_seconds=1, clock=clock)
    first = store.issue({"access_token": "a"})
    second = store.issue({"access_token": "b"})

    clock.advance(299.9)
    assert store.redeem(first) == {"access_token": "a"}

    clock.advance(0.2)
    assert store.redeem(second) is None


def test_payloads_are_isolated(clock):
    store = ExchangeStore(clock=clock)
    c1 = store.issue({"access_token": "p1"})
    c2 = store.issue({"access_token": "p2"})

    assert store.redeem(c2) == {"access_token": "p2"}
    assert store.redeem(c1) == {"access_token": "p1"}


def test_store_keeps_its_own_copy_of_the_payload(clock):
    store = ExchangeStore(clock=clock)
    payload = {"access_token": "abc"}
    code = store.issue(payload)
    payload["access_token"] = "tampered"

    assert store.redeem(code) == {"access_token": "abc"}


def test_non_positive_ttl_is_rejected(clock):
    store = ExchangeStore(clock=clock)
    with pytest.raises(ValueError):
        store.issue({"access_token": "abc"}, 0)
    with pytest.raises(ValueError):
        ExchangeStore(ttl_seconds=-1)


def test_collision_is_fatal_and_keeps_the_live_entry(clock):
    store = ExchangeStore(clock=clock, code_factory=lambda: "same")
    store.issue({"access_token": "first"})

    with pytest.raises(CodeCollision):
        store.issue({"access_token": "second"})
    assert store.redeem("same") == {"access_token": "first"}


def test_sweep_removes_only_expired_and_notifies(clock):
    store = ExchangeStore(ttl_seconds=10, clock=clock)
    seen = []
    store.add_expiry_listener(seen.extend)

    old = store.issue({"access_token": "old"})
    clock.advance(6)
    young = store.issue({"access_token": "young"})
    clock.advance(5)

    assert store.sweep() == 1
    assert seen == [old]
    assert old not in store
    assert store.redeem(young) == {"access_token": "young"}


def test_bound_code_only_redeems_for_its_origin(clock):
    store = ExchangeStore(clock=clock)
    code = store.issue({"access_token": "abc"}, origin=ORIGIN)
    assert store.redeem(code, origin=ORIGIN) == {"access_token": "abc"}


def test_bound_code_presented_from_other_origin_is_burned(clock):
    store = ExchangeStore(clock=clock)
    code = store.issue({"access_token": "abc"}, origin=ORIGIN)

    assert store.redeem(code, origin="https://evil.example") is None
    assert store.redeem(code, origin=ORIGIN) is None


def test_concurrent_redeem_has_exactly_one_winner():
    store = ExchangeStore()
    code = store.issue({"access_token": "abc"})
    workers = 16
    barrier = threading.Barrier(workers)

    def attempt():
        barrier.wait()
        return store.redeem(code)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda _: attempt(), range(workers)))

    winners = [r for r in results if r is not None]
    assert winners == [{"access_token": "abc"}]


def test_sweep_racing_redeem_never_double_delivers():
    store = ExchangeStore(ttl_seconds=300)
    codes = [store.issue({"access_token": str(i)}) for i in range(500)]
    stop = threading.Event()

    def sweeper():
        while not stop.is_set():
            store.sweep()

    t = threading.Thread(target=sweeper)
    t.start()
    try:
        with ThreadPoolExecutor(max_workers=8) as pool:
            first = list(pool.map(store.redeem, codes))
            second = list(pool.map(store.redeem, codes))
    finally:
        stop.set()
        t.join()

    assert [p["access_token"] for p in first] == [str(i) for i in range(500)]
    assert all(p is None for p in second)
    assert len(store) == 0


async def test_background_sweeper_bounds_memory():
    store = ExchangeStore(ttl_seconds=0.01, grace_seconds=0.01)
    for i in range(20):
        store.issue({"access_token": str(i)})

    store.start_sweeper()
    assert store.sweeping
    try:
        await asyncio.sleep(0.2)
        assert len(store) == 0
    finally:
        await store.stop_sweeper()
    assert not store.sweeping


async def test_sweeper_survives_a_failing_listener():
    store = ExchangeStore(ttl_seconds=0.01, grace_seconds=0.01)

    def boom(codes):
        raise RuntimeError("listener broke")

    store.add_expiry_listener(boom)
    store.issue({"access_token": "a"})
    store.start_sweeper()
    try:
        await asyncio.sleep(0.1)
        store.issue({"access_token": "b"})
        await asyncio.sleep(0.1)
        assert store.sweeping
        assert len(store) == 0
    finally:
        await store.stop_sweeper()
