from fastapi.testclient import TestClient

from confcall.api.server import create_app
from confcall.rtp.coordinator import DeactivateReason, SsrcType
from confcall.rtp.pairing import SessionPairEntry
from confcall.rtp.tracer import LatencyTracer

from test_session import ALICE, BOB, CAROL, make_session


def make_client():
    session, _, _, _ = make_session()
    session.start_call(["Bob", "Carol"])
    return TestClient(create_app(session)), session


def test_healthz_reports_local_address() -> None:
    client, _ = make_client()

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "me": ALICE, "announcerRunning": False, "mediaStarted": False}


def test_roster_lists_participants_with_ports() -> None:
    client, _ = make_client()

    payload = client.get("/roster").json()

    assert payload["me"] == ALICE
    assert [entry["address"] for entry in payload["participants"]] == [BOB, CAROL, ALICE]
    assert [entry["mediaPort"] for entry in payload["participants"]] == [10000, 10004, 10008]
    assert payload["participants"][2]["local"] is True


def test_participants_and_ssrcs_follow_coordinator() -> None:
    client, session = make_client()
    coordinator = session.coordinator
    coordinator.on_parameter_packet(BOB, "SPS==", 111, 222)
    coordinator.on_ssrc_activate(SsrcType.VIDEO, 111)
    coordinator.on_ssrc_activate(SsrcType.AUDIO, 999)
    coordinator.on_parameter_packet(CAROL, "PPS==", 555, 666)
    coordinator.on_ssrc_activate(SsrcType.VIDEO, 555)
    coordinator.on_ssrc_deactivate(SsrcType.VIDEO, 555, DeactivateReason.BYE)

    participants = client.get("/participants").json()
    assert participants == {
        "records": [{"sourceAddress": BOB, "pictureParameters": "SPS==", "videoSsrc": 111, "audioSsrc": 222}]
    }

    ssrcs = client.get("/ssrcs").json()
    assert ssrcs["active"] == {"111": "video"}
    assert ssrcs["orphans"] == {"video": [], "audio": [999]}
    assert ssrcs["deactivated"] == {"555": "bye"}



def test_latency_is_disabled_without_a_tracer() -> None:
    client, _ = make_client()

    assert client.get("/latency").json() == {"enabled": False, "pairs": {}}


def test_latency_reports_traced_pairs() -> None:
    ticks = iter([0, 2_000_000])
    tracer = LatencyTracer(clock=lambda: next(ticks))
    entry = SessionPairEntry("recv_rtp_sink_0", "recv_rtp_src_0_111_96")
    tracer.track(entry)
    tracer.sink_buffer(entry.send_sub_endpoint)
    tracer.source_buffer(entry)
    session, _, _, _ = make_session(tracer=tracer)

    payload = TestClient(create_app(session)).get("/latency").json()

    assert payload == {
        "enabled": True,
        "pairs": {
            "recv_rtp_sink_0->recv_rtp_src_0_111_96": {"count": 1, "meanMs": 2.0, "maxMs": 2.0, "lastMs": 2.0},
        },
    }
