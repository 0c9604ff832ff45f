import asyncio

import pytest

from couchlurker.errors import FrameDecodeFailed, InferenceFailed
from couchlurker.lifecycle import HostLifecycle
from couchlurker.loop import CaptureDetectLoop
from couchlurker.models import FailureKind, LoopState
from conftest import FakeHandle, ScriptedCapture, ScriptedEngine, make_frame, spin


def _run_ticks(loop, n, period=5.0):
    """Run `loop` until `n` reports were emitted, then cancel it."""
    async def main():
        seen = []
        done = asyncio.Event()

        def on_tick(report):
            seen.append(report)
            if len(seen) >= n:
                done.set()

        task = asyncio.ensure_future(loop.run(FakeHandle(), period, on_tick))
        await done.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return seen

    return asyncio.run(main())


def test_success_reports_in_tick_order(clock, reporter):
    capture = ScriptedCapture()
    loop = CaptureDetectLoop(capture, ScriptedEngine([0, 2, 1]), reporter,
                             sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 3)

    assert [r.face_count for r in reporter.reports] == [0, 2, 1]
    assert [r.tick for r in reporter.reports] == [1, 2, 3]
    assert [r.ts for r in reporter.reports] == [5.0, 10.0, 15.0]
    assert all(r.ok for r in reporter.reports)
    assert loop.state is LoopState.STOPPED


def test_wait_is_measured_from_end_of_previous_tick(clock, reporter):
    # each capture takes 2 time units
    capture = ScriptedCapture(clock=clock, cost=2.0)
    loop = CaptureDetectLoop(capture, ScriptedEngine([1, 1, 1]), reporter,
                             sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 3)

    assert clock.sleeps[:3] == [5.0, 5.0, 5.0]
    assert [r.ts for r in reporter.reports] == [7.0, 14.0, 21.0]


def test_capture_error_does_not_stop_the_loop(clock, reporter, capture_error):
    capture = ScriptedCapture([None, capture_error, None])
    loop = CaptureDetectLoop(capture, ScriptedEngine([3, 4]), reporter,
                             sleep=clock.sleep, clock=clock)
    states = []

    async def main():
        done = asyncio.Event()

        def on_tick(report):
            states.append(loop.state)
            if report.tick == 3:
                done.set()

        task = asyncio.ensure_future(loop.run(FakeHandle(), 5.0, on_tick))
        await done.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())

    r1, r2, r3 = reporter.reports
    assert r1.face_count == 3
    assert r2.failure is FailureKind.CAPTURE_FAILED and r2.face_count is None
    assert r2.consecutive_failures == 1
    assert r3.face_count == 4 and r3.consecutive_failures == 0
    assert r3.ts == 15.0
    assert states == [LoopState.RUNNING] * 3
    assert capture.calls == 3


def test_consecutive_failures_accumulate(clock, reporter, capture_error):
    capture = ScriptedCapture([capture_error, capture_error])
    engine = ScriptedEngine([InferenceFailed("engine crashed"), 5])
    loop = CaptureDetectLoop(capture, engine, reporter, sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 4)

    kinds = [r.failure for r in reporter.reports]
    assert kinds == [FailureKind.CAPTURE_FAILED, FailureKind.CAPTURE_FAILED,
                     FailureKind.INFERENCE_FAILED, None]
    assert [r.consecutive_failures for r in reporter.reports] == [1, 2, 3, 0]
    assert loop.status().ticks == 4


def test_frame_released_once_even_when_infer_raises(clock, reporter):
    class RaisingEngine:
        def infer(self, frame, callback):
            raise FrameDecodeFailed("garbage payload")

    capture = ScriptedCapture()
    loop = CaptureDetectLoop(capture, RaisingEngine(), reporter, sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 2)

    assert len(capture.frames) == 2
    assert capture.releases == [1, 1]
    assert all(f.released for f in capture.frames)
    assert [r.failure for r in reporter.reports] == [FailureKind.FRAME_DECODE_FAILED] * 2


def test_unexpected_infer_exception_is_contained(clock, reporter):
    class BrokenEngine:
        def infer(self, frame, callback):
            raise ZeroDivisionError

    capture = ScriptedCapture()
    loop = CaptureDetectLoop(capture, BrokenEngine(), reporter, sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 1)

    assert reporter.reports[0].failure is FailureKind.INFERENCE_FAILED
    assert capture.releases == [1]


def test_frame_released_when_inference_is_initiated(clock, reporter):
    capture = ScriptedCapture()
    engine = ScriptedEngine([2])
    loop = CaptureDetectLoop(capture, engine, reporter, sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 1)

    # the engine sees a live frame; it is released right after the call
    assert engine.seen_released == [False]
    assert capture.releases == [1]


def test_invalid_count_is_an_inference_failure(clock, reporter):
    loop = CaptureDetectLoop(ScriptedCapture(), ScriptedEngine([-1, "3", 2]), reporter,
                             sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 3)

    assert [r.failure for r in reporter.reports[:2]] == [FailureKind.INFERENCE_FAILED] * 2
    assert reporter.reports[2].face_count == 2


def test_reporter_errors_do_not_stop_the_loop(clock):
    class ExplodingReporter:
        def __init__(self):
            self.calls = 0
        def report(self, report):
            self.calls += 1
            raise RuntimeError("sink offline")

    rep = ExplodingReporter()
    loop = CaptureDetectLoop(ScriptedCapture(), ScriptedEngine([1, 1]), rep,
                             sleep=clock.sleep, clock=clock)

    _run_ticks(loop, 2)
    assert rep.calls == 2


@pytest.mark.parametrize("stage", ["wait", "capture", "analyze"])
def test_cancel_at_any_suspension_stops_the_loop(stage, reporter):
    capture = ScriptedCapture(deliver=stage != "capture")
    engine = ScriptedEngine([1], deliver=stage != "analyze")

    async def parked_sleep(seconds):
        if stage == "wait":
            await asyncio.Event().wait()  # never set

    loop = CaptureDetectLoop(capture, engine, reporter, sleep=parked_sleep)

    async def main():
        task = asyncio.ensure_future(loop.run(FakeHandle(), 5.0))
        await spin()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        calls = capture.calls
        await spin()
        assert capture.calls == calls

    asyncio.run(main())

    assert loop.state is LoopState.STOPPED
    assert reporter.reports == []
    assert capture.calls == (0 if stage == "wait" else 1)


def test_frame_delivered_after_cancel_is_released(reporter):
    capture = ScriptedCapture(deliver=False)

    async def instant(seconds):
        await asyncio.sleep(0)

    loop = CaptureDetectLoop(capture, ScriptedEngine(), reporter, sleep=instant)

    async def main():
        task = asyncio.ensure_future(loop.run(FakeHandle(), 0))
        await spin()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # the camera answers late
        late = make_frame(capture.releases)
        capture.callback(late, None)
        await spin()
        return late

    late = asyncio.run(main())
    assert late.released
    assert capture.releases == [1]


def test_lifecycle_teardown_stops_the_loop(clock, reporter):
    lifecycle = HostLifecycle()
    capture = ScriptedCapture()
    loop = CaptureDetectLoop(capture, ScriptedEngine([1, 1, 1]), reporter, lifecycle=lifecycle,
                             sleep=clock.sleep, clock=clock)

    async def main():
        def on_tick(report):
            if report.tick == 2:
                lifecycle.teardown()

        task = asyncio.ensure_future(loop.run(FakeHandle(), 5.0, on_tick))
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())

    assert loop.state is LoopState.STOPPED
    assert capture.calls == 2
    assert len(reporter.reports) == 2
