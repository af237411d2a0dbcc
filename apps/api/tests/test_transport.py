"""Tests for the aiortc transport adapter."""
from __future__ import annotations

import pytest
from aiortc.mediastreams import AudioStreamTrack

from callrelay.schemas.signaling import IceCandidate
from callrelay.services.transport import AiortcTransport, build_rtc_configuration


def test_rtc_configuration_uses_given_servers():
    configuration = build_rtc_configuration(["stun:stun.example.org:3478"])

    assert [server.urls for server in configuration.iceServers] == [["stun:stun.example.org:3478"]]
    assert build_rtc_configuration([]).iceServers == []


@pytest.mark.asyncio
async def test_local_tracks_are_added_once():
    transport = AiortcTransport(build_rtc_configuration([]))
    track = AudioStreamTrack()

    transport.add_local_tracks([track])
    transport.add_local_tracks(track)

    senders = [sender for sender in transport.peer_connection.getSenders() if sender.track is not None]
    assert [sender.track for sender in senders] == [track]
    await transport.close()


@pytest.mark.asyncio
async def test_end_of_candidates_marker_is_a_no_op():
    transport = AiortcTransport(build_rtc_configuration([]))

    await transport.add_ice_candidate(IceCandidate(candidate=""))

    await transport.close()
