import asyncio

import numpy as np
import pytest

from couchlurker.errors import CaptureFailed
from couchlurker.models import Frame


class FakeClock:
    """Virtual time: `sleep` advances `now` instead of waiting."""
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakePrompter:
    def __init__(self, granted=False, answer=None):
        self.granted = granted
        self.answer = answer
        self.prompts = 0
        self.callback = None

    def check_granted(self):
        return self.granted

    def prompt_once(self, callback):
        self.prompts += 1
        self.callback = callback
        if self.answer is not None:
            callback(self.answer)


class FakeHandle:
    valid = True


class FakeDeviceProvider:
    def __init__(self, error=None, bind_error=None, deliver=True):
        self.error = error
        self.bind_error = bind_error
        self.deliver = deliver
        self.requests = 0
        self.binds = []
        self.callback = None
        self.handle = FakeHandle()

    def get_instance_async(self, callback):
        self.requests += 1
        self.callback = callback
        if not self.deliver:
            return
        if self.error is not None:
            callback(None, self.error)
        else:
            callback("provider", None)

    def bind(self, provider, lifecycle, selector):
        self.binds.append((provider, selector))
        if self.bind_error is not None:
            raise self.bind_error
        return self.handle


def make_frame(releases=None, rotation=0):
    def on_release():
        if releases is not None:
            releases.append(1)
    return Frame(image=np.zeros((8, 8, 3), dtype=np.uint8), rotation=rotation, on_release=on_release)


class ScriptedCapture:
    """Delivers frames (or CaptureFailed for entries that are exceptions) in order."""
    def __init__(self, script=None, clock=None, cost=0.0, deliver=True):
        self.script = list(script or [])
        self.clock = clock
        self.cost = cost
        self.deliver = deliver
        self.calls = 0
        self.frames = []
        self.releases = []
        self.callback = None

    def capture(self, handle, callback):
        self.calls += 1
        self.callback = callback
        if self.clock is not None:
            self.clock.now += self.cost
        if not self.deliver:
            return
        item = self.script.pop(0) if self.script else None
        if isinstance(item, BaseException):
            callback(None, item)
            return
        frame = make_frame(self.releases)
        self.frames.append(frame)
        callback(frame, None)


class ScriptedEngine:
    """Answers each infer call with the next count (or raises/delivers an exception)."""
    def __init__(self, counts=None, deliver=True):
        self.counts = list(counts or [])
        self.deliver = deliver
        self.calls = 0
        self.seen_released = []
        self.callback = None

    def infer(self, frame, callback):
        self.calls += 1
        self.seen_released.append(frame.released)
        self.callback = callback
        if not self.deliver:
            return
        item = self.counts.pop(0) if self.counts else 0
        if isinstance(item, BaseException):
            callback(None, item)
        else:
            callback(item, None)


class RecordingReporter:
    def __init__(self):
        self.reports = []

    def report(self, report):
        self.reports.append(report)


async def spin(n=10):
    """Let pending callbacks and tasks run."""
    for _ in range(n):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def capture_error():
    return CaptureFailed("lens covered")
