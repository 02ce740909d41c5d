import json
from typing import List, Optional, Tuple

from confcall.rtp.coordinator import (
    DeactivateReason,
    ParameterRecord,
    SsrcLifecycleCoordinator,
    SsrcState,
    SsrcType,
)
from confcall.rtp.receiver import DEACTIVATION_SIGNALS, ReceiverPipeline

RECORD = ParameterRecord(source_address="10.0.0.2", picture_parameters="SPS==", video_ssrc=111, audio_ssrc=222)


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[Tuple] = []

    def on_ssrc_activate(self, ssrc_type: SsrcType, ssrc: int) -> None:
        self.events.append(("activate", ssrc_type, ssrc))

    def on_ssrc_deactivate(self, ssrc_type: SsrcType, ssrc: int, reason: DeactivateReason) -> None:
        self.events.append(("deactivate", ssrc_type, ssrc, reason))


def test_activations_are_forwarded_and_departures_once() -> None:
    sink = RecordingSink()
    receiver = ReceiverPipeline(sink)

    receiver.handle_ssrc_active(0, 111)
    receiver.handle_ssrc_active(0, 111)
    receiver.handle_ssrc_active(1, 222)
    receiver.handle_ssrc_inactive(0, 111, DeactivateReason.BYE)
    receiver.handle_ssrc_inactive(0, 111, DeactivateReason.TIMEOUT)
    receiver.handle_ssrc_inactive(1, 999, DeactivateReason.STOP)

    assert sink.events == [
        ("activate", SsrcType.VIDEO, 111),
        ("activate", SsrcType.VIDEO, 111),
        ("activate", SsrcType.AUDIO, 222),
        ("deactivate", SsrcType.VIDEO, 111, DeactivateReason.BYE),
    ]


def test_ssrc_can_reactivate_after_deactivation() -> None:
    sink = RecordingSink()
    receiver = ReceiverPipeline()
    receiver.set_event_sink(sink)

    receiver.handle_ssrc_active(0, 111)
    receiver.handle_ssrc_inactive(0, 111, DeactivateReason.TIMEOUT)
    receiver.handle_ssrc_active(0, 111)

    assert [event[0] for event in sink.events] == ["activate", "deactivate", "activate"]


def test_signal_table_covers_every_rtpbin_departure() -> None:
    assert DEACTIVATION_SIGNALS == {
        "on-bye-ssrc": DeactivateReason.BYE,
        "on-bye-timeout": DeactivateReason.TIMEOUT,
        "on-npt-stop": DeactivateReason.STOP,
        "on-sender-timeout": DeactivateReason.TIMEOUT,
        "on-timeout": DeactivateReason.TIMEOUT,
    }


def test_wire_before_pad_keeps_chain_pending() -> None:
    receiver = ReceiverPipeline()

    receiver.wire_decode_chain(SsrcType.VIDEO, 111, RECORD, "panel-bob")
    chain = receiver.describe()["chains"]["111"]
    assert chain == {"type": "video", "state": "pending", "pad": None, "address": "10.0.0.2"}

    receiver.handle_source_pad("recv_rtp_src_0_111_96")
    assert receiver.describe()["chains"]["111"]["pad"] == "recv_rtp_src_0_111_96"


def test_pad_seen_before_wire_is_remembered() -> None:
    receiver = ReceiverPipeline()

    receiver.handle_source_pad("recv_rtp_src_1_222_96")
    receiver.handle_source_pad("send_rtcp_src_0")
    receiver.wire_decode_chain(SsrcType.AUDIO, 222, RECORD, "panel-bob")

    snapshot = receiver.describe()
    assert snapshot["sourcePads"] == {"222": "recv_rtp_src_1_222_96"}
    assert snapshot["chains"]["222"]["pad"] == "recv_rtp_src_1_222_96"


def test_unwire_forgets_chain() -> None:
    receiver = ReceiverPipeline()
    receiver.wire_decode_chain(SsrcType.VIDEO, 111, RECORD, "panel-bob")

    receiver.unwire_decode_chain(SsrcType.VIDEO, 111)
    receiver.unwire_decode_chain(SsrcType.VIDEO, 111)

    assert receiver.describe()["chains"] == {}


def test_describe_without_runtime() -> None:
    receiver = ReceiverPipeline(listen_ports=[10000])
    receiver.set_listen_ports([10004, 10008])

    snapshot = receiver.describe()
    json.dumps(snapshot, sort_keys=True)

    assert snapshot["running"] is False
    assert snapshot["listenPorts"] == [10004, 10008]


def test_removed_pad_returns_chain_to_pending_until_recreated() -> None:
    receiver = ReceiverPipeline()
    receiver.wire_decode_chain(SsrcType.VIDEO, 111, RECORD, "panel-bob")
    receiver.handle_source_pad("recv_rtp_src_0_111_96")

    receiver.handle_source_pad_removed("recv_rtp_src_0_111_96")

    snapshot = receiver.describe()
    assert snapshot["sourcePads"] == {}
    assert snapshot["chains"]["111"] == {"type": "video", "state": "pending", "pad": None, "address": "10.0.0.2"}

    receiver.handle_source_pad("recv_rtp_src_0_111_96")
    assert receiver.describe()["chains"]["111"]["pad"] == "recv_rtp_src_0_111_96"


def test_removing_an_unrelated_pad_keeps_the_current_one() -> None:
    receiver = ReceiverPipeline()
    receiver.handle_source_pad("recv_rtp_src_0_111_97")

    receiver.handle_source_pad_removed("recv_rtp_src_0_111_96")
    receiver.handle_source_pad_removed("send_rtcp_src_0")

    assert receiver.describe()["sourcePads"] == {"111": "recv_rtp_src_0_111_97"}


class FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def now(self) -> float:
        return self.value


class NamedSurfaces:
    def display_surface_for(self, address: str) -> Optional[object]:
        return "panel-bob" if address == "10.0.0.2" else None


def test_stream_is_wired_after_its_orphan_expired() -> None:
    clock = FakeClock()
    receiver = ReceiverPipeline()
    coordinator = SsrcLifecycleCoordinator(
        "10.0.0.1", receiver, NamedSurfaces(), orphan_ttl=30.0, monotonic=clock.now
    )
    receiver.set_event_sink(coordinator)

    receiver.handle_ssrc_active(0, 111)
    clock.value += 31.0
    coordinator.on_parameter_packet("10.0.0.2", "SPS==", 111, 222)
    assert receiver.describe()["chains"] == {}

    receiver.handle_ssrc_active(0, 111)

    assert coordinator.state_of(111) is SsrcState.ACTIVE
    assert receiver.describe()["chains"]["111"]["address"] == "10.0.0.2"
