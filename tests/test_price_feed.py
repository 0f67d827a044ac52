import asyncio
import random

import pytest

from price_feed import SimulatedPriceTable, price_stream


def test_tick_moves_each_symbol_within_jitter():
    table = SimulatedPriceTable({"btcusdt": 43250.0, "ETHUSDT": 2678.0}, jitter=0.0005, rng=random.Random(1))
    before = table.snapshot()
    assert set(before) == {"BTCUSDT", "ETHUSDT"}

    for _ in range(50):
        previous = table.snapshot()
        ticks = table.tick()
        assert {t.symbol for t in ticks} == set(previous)
        for tick in ticks:
            assert abs(tick.price / previous[tick.symbol] - 1.0) <= 0.0005 + 1e-12
            assert table.get(tick.symbol) == tick.price


def test_seeded_tables_walk_identically():
    a = SimulatedPriceTable({"X": 100.0}, rng=random.Random(9))
    b = SimulatedPriceTable({"X": 100.0}, rng=random.Random(9))
    for _ in range(10):
        a.tick()
        b.tick()
    assert a.get("X") == b.get("X")


def test_snapshot_is_a_copy():
    table = SimulatedPriceTable({"X": 100.0})
    snap = table.snapshot()
    snap["X"] = 1.0
    assert table.get("X") == 100.0
    assert "x" in table
    assert table.get("missing") is None


def test_set_rejects_non_positive_price():
    table = SimulatedPriceTable({"X": 100.0})
    with pytest.raises(ValueError):
        table.set("X", 0.0)


@pytest.mark.asyncio
async def test_price_stream_yields_ticks():
    table = SimulatedPriceTable({"X": 100.0}, rng=random.Random(3))
    stream = price_stream(table, interval_s=0.01)
    ticks = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
    await stream.aclose()
    assert len(ticks) == 1
    assert ticks[0].symbol == "X"
    assert table.get("X") == ticks[0].price
