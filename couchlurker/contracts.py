"""
Collaborator contracts consumed by the orchestration core.

Every asynchronous operation completes through a callback invoked exactly once,
from whatever thread the collaborator runs on. Result callbacks take
`(value, error)`: exactly one of the two is not None.
"""
from __future__ import annotations
from typing import Any, Callable, Optional, Protocol

from couchlurker.lifecycle import HostLifecycle
from couchlurker.models import Frame, LensFacing, TickReport

ResultCallback = Callable[[Any, Optional[BaseException]], None]


class PermissionPrompter(Protocol):
    def check_granted(self) -> bool: ...

    def prompt_once(self, callback: Callable[[bool], None]) -> None: ...


class CaptureHandle(Protocol):
    """A bound, ready camera. Opaque to the core."""

    @property
    def valid(self) -> bool: ...


class DeviceProvider(Protocol):
    def get_instance_async(self, callback: ResultCallback) -> None: ...

    def bind(self, provider: Any, lifecycle: HostLifecycle, selector: LensFacing) -> CaptureHandle: ...


class CaptureDevice(Protocol):
    def capture(self, handle: CaptureHandle, callback: ResultCallback) -> None: ...


class InferenceEngine(Protocol):
    def infer(self, frame: Frame, callback: ResultCallback) -> None: ...


class Reporter(Protocol):
    def report(self, report: TickReport) -> None: ...
