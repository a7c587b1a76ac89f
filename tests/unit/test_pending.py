"""Tests for PendingTable — terminal transitions, capacity, sweep."""

from __future__ import annotations

import asyncio
import time

import pytest

from ipcbus.core.errors import ErrorCode
from ipcbus.core.pending import PendingTable


class TestCapacity:
    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            PendingTable(0)

    @pytest.mark.asyncio
    async def test_is_full(self):
        table = PendingTable(2)
        loop = asyncio.get_running_loop()
        table.register("a", "PING", 1000, loop=loop)
        assert not table.is_full
        table.register("b", "PING", 1000, loop=loop)
        assert table.is_full
        assert len(table) == 2
        assert table.ids() == ["a", "b"]
        table.close()


class TestTransitions:
    @pytest.mark.asyncio
    async def test_resolve_settles_success(self):
        table = PendingTable()
        entry = table.register("r1", "RISK_CHECK", 1000, loop=asyncio.get_running_loop())
        assert "r1" in table
        assert table.resolve("r1", {"passed": True}) is True
        res = await entry.future
        assert res.ok
        assert res.data == {"passed": True}
        assert "r1" not in table
        assert entry.timer is None

    @pytest.mark.asyncio
    async def test_resolve_unknown_id(self):
        assert PendingTable().resolve("ghost", None) is False

    @pytest.mark.asyncio
    async def test_timer_expires_entry(self):
        table = PendingTable()
        entry = table.register("r1", "RISK_CHECK", 10, loop=asyncio.get_running_loop())
        res = await entry.future
        assert not res.ok
        assert res.error == ErrorCode.TIMEOUT.value
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_resolve_after_expire_is_noop(self):
        table = PendingTable()
        entry = table.register("r1", "RISK_CHECK", 1000, loop=asyncio.get_running_loop())
        assert table.expire("r1") is True
        assert table.resolve("r1", "late") is False
        res = await entry.future
        assert res.error == "timeout"

    @pytest.mark.asyncio
    async def test_discard_settles_with_code(self):
        table = PendingTable()
        entry = table.register("r1", "RISK_CHECK", 1000, loop=asyncio.get_running_loop())
        assert table.discard("r1", ErrorCode.UNKNOWN_DOMAIN) is True
        res = await entry.future
        assert res.error == "unknown_domain"
        assert table.discard("r1", ErrorCode.UNKNOWN_DOMAIN) is False

    @pytest.mark.asyncio
    async def test_close_expires_everything(self):
        table = PendingTable()
        loop = asyncio.get_running_loop()
        entries = [table.register(f"r{i}", "PING", 1000, loop=loop) for i in range(3)]
        assert table.close() == 3
        assert len(table) == 0
        for entry in entries:
            assert (await entry.future).error == "timeout"


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_evicts_only_expired(self):
        table = PendingTable()
        loop = asyncio.get_running_loop()
        old = table.register("old", "PING", 50, loop=loop)
        table.register("new", "PING", 60_000, loop=loop)

        evicted = table.sweep(time.monotonic() + 1)
        assert evicted == ["old"]
        assert "new" in table
        assert (await old.future).error == "timeout"
        table.close()

    @pytest.mark.asyncio
    async def test_sweep_cancels_timer(self):
        table = PendingTable()
        entry = table.register("r1", "PING", 50, loop=asyncio.get_running_loop())
        timer = entry.timer
        table.sweep(time.monotonic() + 1)
        assert timer is not None and timer.cancelled()

    @pytest.mark.asyncio
    async def test_sweep_nothing_expired(self):
        table = PendingTable()
        table.register("r1", "PING", 60_000, loop=asyncio.get_running_loop())
        assert table.sweep() == []
        table.close()
