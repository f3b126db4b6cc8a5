"""Tests for react_agent.stop_signal."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from react_agent.stop_signal import InMemoryStopSignal, RedisStopSignal, stop_requested


class TestInMemoryStopSignal:
    @pytest.mark.asyncio
    async def test_request_and_clear(self):
        signal = InMemoryStopSignal()
        assert await signal.is_stop_requested("r1") is False
        await signal.request_stop("r1")
        assert await signal.is_stop_requested("r1") is True
        assert await signal.is_stop_requested("r2") is False
        await signal.clear("r1")
        assert await signal.is_stop_requested("r1") is False

    @pytest.mark.asyncio
    async def test_clear_unknown_is_noop(self):
        await InMemoryStopSignal().clear("nope")


class TestRedisStopSignal:
    @pytest.mark.asyncio
    async def test_request_sets_expiring_key(self):
        client = MagicMock()
        client.set = AsyncMock(return_value=True)
        signal = RedisStopSignal(client, prefix="s:", ttl_s=10)
        await signal.request_stop("r1")
        client.set.assert_awaited_once_with("s:r1", "1", ex=10)

    @pytest.mark.asyncio
    async def test_exists_and_clear(self):
        client = MagicMock()
        client.exists = AsyncMock(return_value=1)
        client.delete = AsyncMock(return_value=1)
        signal = RedisStopSignal(client, prefix="s:")
        assert await signal.is_stop_requested("r1") is True
        client.exists.assert_awaited_once_with("s:r1")
        await signal.clear("r1")
        client.delete.assert_awaited_once_with("s:r1")


class TestStopRequested:
    @pytest.mark.asyncio
    async def test_no_signal(self):
        assert await stop_requested(None, "r1") is False

    @pytest.mark.asyncio
    async def test_backend_failure_reads_as_not_stopped(self):
        signal = MagicMock()
        signal.is_stop_requested = AsyncMock(side_effect=ConnectionError("redis down"))
        assert await stop_requested(signal, "r1") is False

    @pytest.mark.asyncio
    async def test_delegates(self):
        signal = InMemoryStopSignal()
        await signal.request_stop("r1")
        assert await stop_requested(signal, "r1") is True
