from typing import Callable, Dict, List

from confcall.rtp import naming
from confcall.rtp.pairing import SessionPairEntry, SessionPairing


class FakeEndpoints:
    def __init__(self, sinks: List[str], sources: List[str]) -> None:
        self.sinks = list(sinks)
        self.sources = list(sources)
        self.callbacks: Dict[int, Callable[[str], None]] = {}
        self.removed_callbacks: Dict[int, Callable[[str], None]] = {}
        self._next = 0

    def source_names(self) -> List[str]:
        return list(self.sources)

    def sink_names(self) -> List[str]:
        return list(self.sinks)

    def connect_source_added(self, callback: Callable[[str], None]) -> int:
        self._next += 1
        self.callbacks[self._next] = callback
        return self._next

    def connect_source_removed(self, callback: Callable[[str], None]) -> int:
        self._next += 1
        self.removed_callbacks[self._next] = callback
        return self._next

    def disconnect(self, token: int) -> None:
        self.callbacks.pop(token, None)
        self.removed_callbacks.pop(token, None)

    def add_source(self, name: str) -> None:
        self.sources.append(name)
        for callback in list(self.callbacks.values()):
            callback(name)

    def remove_source(self, name: str) -> None:
        self.sources.remove(name)
        for callback in list(self.removed_callbacks.values()):
            callback(name)


def test_sink_names_follow_rtpbin_convention() -> None:
    assert naming.sink_name_for_source("send_rtp_src_0") == "send_rtp_sink_0"
    assert naming.sink_name_for_source("send_rtp_src_12") == "send_rtp_sink_12"
    assert naming.sink_name_for_source("recv_rtp_src_1_3735928559_96") == "recv_rtp_sink_1"
    assert naming.sink_name_for_source("send_rtcp_src_0") is None
    assert naming.sink_name_for_source("src_0") is None


def test_receive_source_names_are_parsed() -> None:
    parsed = naming.parse_receive_source("recv_rtp_src_0_3735928559_96")

    assert parsed is not None
    assert (parsed.session, parsed.ssrc, parsed.payload_type) == (0, 3735928559, 96)
    assert naming.parse_receive_source("send_rtp_src_0") is None


def test_eager_pairing_covers_existing_sources() -> None:
    endpoints = FakeEndpoints(
        sinks=["send_rtp_sink_0", "send_rtp_sink_1"],
        sources=["send_rtp_src_0", "send_rtp_src_1", "send_rtcp_src_0"],
    )
    seen: List[SessionPairEntry] = []
    pairing = SessionPairing(endpoints, on_pair=seen.append)

    created = pairing.attach()

    assert created == [
        SessionPairEntry("send_rtp_sink_0", "send_rtp_src_0"),
        SessionPairEntry("send_rtp_sink_1", "send_rtp_src_1"),
    ]
    assert seen == created
    assert pairing.is_attached


def test_deferred_pairing_waits_for_new_sources() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0", "recv_rtp_sink_1"], sources=[])
    seen: List[SessionPairEntry] = []
    pairing = SessionPairing(endpoints, on_pair=seen.append)

    assert pairing.attach() == []
    endpoints.add_source("recv_rtp_src_0_1111_96")
    endpoints.add_source("recv_rtp_src_1_2222_96")

    assert seen == [
        SessionPairEntry("recv_rtp_sink_0", "recv_rtp_src_0_1111_96"),
        SessionPairEntry("recv_rtp_sink_1", "recv_rtp_src_1_2222_96"),
    ]


def test_late_sources_are_paired_after_eager_pass() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=["recv_rtp_src_0_1_96"])
    pairing = SessionPairing(endpoints)

    pairing.attach()
    endpoints.add_source("recv_rtp_src_0_2_96")

    assert [entry.receive_sub_endpoint for entry in pairing.pairs] == [
        "recv_rtp_src_0_1_96",
        "recv_rtp_src_0_2_96",
    ]


def test_each_source_is_paired_once() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=["recv_rtp_src_0_1_96"])
    seen: List[SessionPairEntry] = []
    pairing = SessionPairing(endpoints, on_pair=seen.append)

    pairing.attach()
    endpoints.add_source("recv_rtp_src_0_1_96")
    assert pairing.attach() == []

    assert len(seen) == 1
    assert len(pairing.pairs) == 1


def test_unpairable_sources_are_skipped() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=["send_rtcp_src_0", "weird_pad", "recv_rtp_src_3_9_96"])
    pairing = SessionPairing(endpoints)

    assert pairing.attach() == []
    assert pairing.pairs == []


def test_detach_stops_deferred_pairing() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=[])
    pairing = SessionPairing(endpoints)
    pairing.attach()

    pairing.detach()
    endpoints.add_source("recv_rtp_src_0_5_96")

    assert not pairing.is_attached
    assert endpoints.callbacks == {}
    assert endpoints.removed_callbacks == {}
    assert pairing.pairs == []


def test_receive_source_pairs_with_session_sink() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=[])
    pairing = SessionPairing(endpoints)
    pairing.attach()

    endpoints.add_source("recv_rtp_src_0_12345_96")

    assert pairing.pairs == [SessionPairEntry("recv_rtp_sink_0", "recv_rtp_src_0_12345_96")]


def test_recreated_source_is_paired_again() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=[])
    seen: List[SessionPairEntry] = []
    gone: List[SessionPairEntry] = []
    pairing = SessionPairing(endpoints, on_pair=seen.append, on_unpair=gone.append)
    pairing.attach()

    endpoints.add_source("recv_rtp_src_0_111_96")
    endpoints.remove_source("recv_rtp_src_0_111_96")
    assert pairing.pairs == []
    endpoints.add_source("recv_rtp_src_0_111_96")

    entry = SessionPairEntry("recv_rtp_sink_0", "recv_rtp_src_0_111_96")
    assert seen == [entry, entry]
    assert gone == [entry]
    assert pairing.pairs == [entry]


def test_removing_an_unpaired_source_is_ignored() -> None:
    endpoints = FakeEndpoints(sinks=["recv_rtp_sink_0"], sources=["send_rtcp_src_0"])
    gone: List[SessionPairEntry] = []
    pairing = SessionPairing(endpoints, on_unpair=gone.append)
    pairing.attach()

    endpoints.remove_source("send_rtcp_src_0")

    assert gone == []
