from confcall.rtp.pairing import SessionPairEntry
from confcall.rtp.tracer import LatencyTracer


class FakeClock:
    def __init__(self) -> None:
        self.value = 0

    def now(self) -> int:
        return self.value

    def advance_ms(self, delta: float) -> None:
        self.value += int(delta * 1_000_000)


VIDEO = SessionPairEntry("recv_rtp_sink_0", "recv_rtp_src_0_111_96")
VIDEO_OTHER = SessionPairEntry("recv_rtp_sink_0", "recv_rtp_src_0_333_96")


def test_latency_is_measured_between_sink_and_source() -> None:
    clock = FakeClock()
    tracer = LatencyTracer(clock=clock.now)
    tracer.track(VIDEO)

    tracer.sink_buffer(VIDEO.send_sub_endpoint)
    clock.advance_ms(4)
    tracer.sink_buffer(VIDEO.send_sub_endpoint)
    clock.advance_ms(6)
    assert tracer.source_buffer(VIDEO) == 10_000_000
    assert tracer.source_buffer(VIDEO) == 6_000_000

    stats = tracer.stats_for(VIDEO)
    assert stats is not None
    assert stats.count == 2
    assert stats.max_ns == 10_000_000
    assert stats.mean_ns == 8_000_000


def test_source_without_pending_arrival_records_nothing() -> None:
    tracer = LatencyTracer(clock=FakeClock().now)
    tracer.track(VIDEO)

    assert tracer.source_buffer(VIDEO) is None
    assert tracer.stats_for(VIDEO).count == 0


def test_sources_sharing_a_sink_share_its_arrivals() -> None:
    clock = FakeClock()
    tracer = LatencyTracer(clock=clock.now)
    tracer.track(VIDEO)
    tracer.track(VIDEO_OTHER)

    tracer.sink_buffer("recv_rtp_sink_0")
    tracer.sink_buffer("recv_rtp_sink_0")
    clock.advance_ms(2)

    assert tracer.source_buffer(VIDEO) == 2_000_000
    assert tracer.source_buffer(VIDEO_OTHER) == 2_000_000
    assert tracer.source_buffer(VIDEO) is None


def test_untracked_pairs_are_not_reported() -> None:
    tracer = LatencyTracer(clock=FakeClock().now)
    tracer.track(VIDEO)
    tracer.track(VIDEO)
    tracer.sink_buffer("recv_rtp_sink_0")
    tracer.source_buffer(VIDEO)

    assert list(tracer.describe()) == ["recv_rtp_sink_0->recv_rtp_src_0_111_96"]
    assert tracer.describe()["recv_rtp_sink_0->recv_rtp_src_0_111_96"]["count"] == 1

    tracer.untrack(VIDEO)
    assert tracer.describe() == {}
    assert tracer.source_buffer(VIDEO) is None


def test_recreated_pair_starts_fresh_statistics() -> None:
    tracer = LatencyTracer(clock=FakeClock().now)
    tracer.track(VIDEO)
    tracer.sink_buffer(VIDEO.send_sub_endpoint)
    tracer.source_buffer(VIDEO)

    tracer.untrack(VIDEO)
    tracer.track(VIDEO)

    stats = tracer.stats_for(VIDEO)
    assert stats is not None
    assert stats.count == 0
