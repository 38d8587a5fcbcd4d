"""Tests for SyncContext: origin token, request cache and context binding."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from src.crmsync.core.context import (
    RequestCache,
    SourceSystem,
    SyncContext,
    bind_context,
    get_current_context,
)


# ── Origin ─────────────────────────────────────────────────────────────────


class TestOrigin:
    def test_first_origin_wins(self):
        ctx = SyncContext()

        assert ctx.set_origin(SourceSystem.CONTENT, "content", 100) is True
        assert ctx.set_origin(SourceSystem.CRM, "Phone", 5) is False
        assert ctx.origin.system == SourceSystem.CONTENT
        assert ctx.origin.entity_id == 100

    def test_nested_originate_keeps_outer_origin(self):
        ctx = SyncContext()

        with ctx.originate(SourceSystem.CONTENT, "content", 100):
            with ctx.originate(SourceSystem.CRM, "Phone", 5) as inner:
                assert inner.system == SourceSystem.CONTENT
            assert ctx.origin is not None
        assert ctx.origin is None

    def test_origin_cleared_on_error(self):
        ctx = SyncContext()

        try:
            with ctx.originate(SourceSystem.CRM, "Email", 1):
                raise RuntimeError("listener blew up")
        except RuntimeError:
            pass

        assert ctx.origin is None

    def test_contexts_are_independent(self):
        a, b = SyncContext(), SyncContext()
        a.set_origin(SourceSystem.CRM, "Phone", 1)
        a.cache.set("ns", 1, "x")

        assert b.origin is None
        assert b.cache.get("ns", 1) is None
        assert a.request_id != b.request_id


# ── Request Cache ────────────────────────────────────────────────────────


class TestRequestCache:
    async def test_loader_called_once(self):
        cache = RequestCache()
        loader = AsyncMock(return_value=42)

        assert await cache.get_or_load("parent", (1, "contact"), loader) == 42
        assert await cache.get_or_load("parent", (1, "contact"), loader) == 42
        assert loader.await_count == 1

    async def test_none_is_cached(self):
        cache = RequestCache()
        loader = AsyncMock(return_value=None)

        await cache.get_or_load("parent", 1, loader)
        await cache.get_or_load("parent", 1, loader)

        assert loader.await_count == 1

    def test_namespaces_do_not_collide(self):
        cache = RequestCache()
        cache.set("a", 1, "first")
        cache.set("b", 1, "second")

        assert cache.pop("a", 1) == "first"
        assert ("a", 1) not in cache
        assert ("b", 1) in cache

    def test_clear(self):
        cache = RequestCache()
        cache.set("a", 1, "x")
        cache.clear()

        assert cache.get("a", 1) is None


# ── Current Context ──────────────────────────────────────────────────────


class TestBindContext:
    def test_bind_and_reset(self):
        ctx = SyncContext()
        assert get_current_context() is None

        with bind_context(ctx):
            assert get_current_context() is ctx

        assert get_current_context() is None

    async def test_concurrent_tasks_see_their_own_context(self):
        seen: dict[str, str] = {}

        async def handle(name: str) -> None:
            ctx = SyncContext(request_id=name)
            with bind_context(ctx):
                await asyncio.sleep(0)
                seen[name] = get_current_context().request_id

        await asyncio.gather(handle("a"), handle("b"))

        assert seen == {"a": "a", "b": "b"}
