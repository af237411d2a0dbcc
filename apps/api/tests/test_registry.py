"""Tests for the connection registry."""
from __future__ import annotations

import random

import pytest

from callrelay.services.registry import ConnectionRegistry, SignalingConnection


async def _noop(message: dict) -> None:
    return None


def make_handle(connection_id: str) -> SignalingConnection:
    return SignalingConnection(connection_id, _noop)


@pytest.mark.asyncio
async def test_register_and_lookup_both_directions():
    registry = ConnectionRegistry()
    handle = make_handle("h1")

    assert await registry.lookup_handle("alice@example.com") is None

    await registry.register("alice@example.com", handle)

    assert await registry.lookup_handle("alice@example.com") is handle
    assert await registry.lookup_identity(handle) == "alice@example.com"


@pytest.mark.asyncio
async def test_stale_unregister_keeps_newer_registration():
    registry = ConnectionRegistry()
    h1, h2 = make_handle("h1"), make_handle("h2")

    await registry.register("alice@example.com", h1)
    await registry.register("alice@example.com", h2)
    assert await registry.lookup_handle("alice@example.com") is h2

    identity = await registry.unregister(h1)

    assert identity == "alice@example.com"
    assert await registry.lookup_handle("alice@example.com") is h2
    assert await registry.lookup_identity(h1) is None
    assert await registry.lookup_identity(h2) == "alice@example.com"


@pytest.mark.asyncio
async def test_unregister_removes_identity_and_room_membership():
    registry = ConnectionRegistry()
    h1, h2 = make_handle("h1"), make_handle("h2")
    await registry.register("alice@example.com", h1)
    await registry.register("bob@example.com", h2)
    await registry.join_room(h1, "r1")
    others = await registry.join_room(h2, "r1")
    assert others == [h1]

    await registry.unregister(h1)

    assert await registry.lookup_handle("alice@example.com") is None
    assert await registry.members("r1") == [h2]
    assert await registry.rooms_of(h1) == set()

    await registry.unregister(h2)
    assert await registry.members("r1") == []


@pytest.mark.asyncio
async def test_rejoining_same_handle_under_new_identity_drops_old_name():
    registry = ConnectionRegistry()
    handle = make_handle("h1")

    await registry.register("alice@example.com", handle)
    await registry.register("alice.smith@example.com", handle)

    assert await registry.lookup_handle("alice@example.com") is None
    assert await registry.lookup_handle("alice.smith@example.com") is handle


@pytest.mark.asyncio
async def test_identities_in_room_skip_superseded_connections():
    registry = ConnectionRegistry()
    h1, h2 = make_handle("h1"), make_handle("h2")
    await registry.register("alice@example.com", h1)
    await registry.join_room(h1, "r1")
    await registry.register("alice@example.com", h2)
    await registry.join_room(h2, "r2")

    assert await registry.identities_in("r1") == []
    assert await registry.identities_in("r2") == ["alice@example.com"]
    assert await registry.rooms_of(h2) == {"r2"}


@pytest.mark.asyncio
async def test_lookup_matches_latest_live_registration_for_random_sequences():
    rng = random.Random(1729)
    identities = ["a", "b", "c"]
    handles = [make_handle(f"h{index}") for index in range(5)]

    for _ in range(50):
        registry = ConnectionRegistry()
        expected: dict[str, SignalingConnection] = {}
        owner: dict[str, str] = {}

        for _ in range(30):
            handle = rng.choice(handles)
            if rng.random() < 0.6:
                identity = rng.choice(identities)
                await registry.register(identity, handle)
                previous = owner.get(handle.connection_id)
                if previous is not None and expected.get(previous) is handle:
                    del expected[previous]
                expected[identity] = handle
                owner[handle.connection_id] = identity
            else:
                await registry.unregister(handle)
                identity = owner.pop(handle.connection_id, None)
                if identity is not None and expected.get(identity) is handle:
                    del expected[identity]

            for identity in identities:
                assert await registry.lookup_handle(identity) is expected.get(identity)
