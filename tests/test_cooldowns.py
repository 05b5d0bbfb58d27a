from __future__ import annotations

from datetime import timedelta

import pytest

from channel_automod.actions.cooldowns import CooldownGate
from channel_automod.storage.kv import InMemoryTTLStore
from tests.factories import FrozenClock, make_channel


@pytest.mark.asyncio
async def test_gate_falls_back_to_database_and_fills_cache(storage) -> None:
    clock = FrozenClock()
    store = InMemoryTTLStore()
    await storage.save_channel(make_channel())
    await storage.upsert_cooldown("10", "memes", clock.now + timedelta(hours=1), clock.now)
    gate = CooldownGate(storage, store, clock=clock)

    active = await gate.active_cooldown("10", "memes")

    assert active is not None and not active.is_mute
    assert await store.get(CooldownGate.key("10", "memes")) == active.expires_at.isoformat()


@pytest.mark.asyncio
async def test_gate_honours_expiry_of_cached_value(storage) -> None:
    clock = FrozenClock()
    await storage.save_channel(make_channel())
    cooldown = await storage.upsert_cooldown("10", "memes", clock.now + timedelta(minutes=5), clock.now)
    gate = CooldownGate(storage, InMemoryTTLStore(), clock=clock)
    await gate.remember(cooldown)

    clock.advance(minutes=10)

    assert await gate.active_cooldown("10", "memes") is None


@pytest.mark.asyncio
async def test_gate_ignores_inactive_rows(storage) -> None:
    clock = FrozenClock()
    await storage.save_channel(make_channel())
    await storage.upsert_cooldown("10", "memes", None, clock.now)
    await storage.deactivate_cooldown("10", "memes", clock.now)
    gate = CooldownGate(storage, InMemoryTTLStore(), clock=clock)

    assert await gate.active_cooldown("10", "memes") is None


@pytest.mark.asyncio
async def test_claim_event_dedupes(storage) -> None:
    gate = CooldownGate(storage, InMemoryTTLStore(), dedupe_ttl_seconds=60)

    assert await gate.claim_event("cast:0x1") is True
    assert await gate.claim_event("cast:0x1") is False
    assert await gate.claim_event("cast:0x2") is True
