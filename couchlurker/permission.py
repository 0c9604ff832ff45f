"""
Camera permission: the gate the core awaits, plus a console prompt provider.
"""
from __future__ import annotations
import asyncio
import logging
import threading
from typing import Callable, List, Optional

from couchlurker.contracts import PermissionPrompter
from couchlurker.models import PermissionOutcome

logger = logging.getLogger(__name__)

PROMPT_TEXT = "Allow couchlurker to use the front camera? [y/N] "


class PermissionGate:
    """Turns a one-shot, externally answered prompt into a single outcome."""

    def __init__(self, prompter: PermissionPrompter):
        self._prompter = prompter
        self._pending = False

    async def request(self) -> PermissionOutcome:
        """
        Resolve the camera permission.

        Already granted -> GRANTED without prompting. Otherwise one prompt is
        registered and the caller is parked until an answer is delivered. If the
        provider delivers several answers before the caller resumes, the last one
        decides; answers arriving after that are ignored.
        Only one request may be outstanding at a time.
        """
        if self._pending:
            raise RuntimeError("permission request already outstanding")

        if self._prompter.check_granted():
            logger.debug("[gate] permission already held")
            return PermissionOutcome.GRANTED

        self._pending = True
        try:
            loop = asyncio.get_running_loop()
            answered = asyncio.Event()
            answers: List[bool] = []

            def record(granted: bool) -> None:
                if answers:
                    logger.debug(f"[gate] answer replaced: {answers[-1]} -> {granted}")
                answers.append(granted)
                answered.set()

            def on_answer(granted) -> None:
                try:
                    loop.call_soon_threadsafe(record, bool(granted))
                except RuntimeError:
                    # event loop already closed; the request is gone
                    logger.debug("[gate] loop closed, dropping answer")

            self._prompter.prompt_once(on_answer)
            logger.debug("[gate] prompt registered, waiting for answer")
            await answered.wait()
            # answers queued before this task resumed are all seen; the last one wins
            granted = answers[-1]
        finally:
            self._pending = False

        outcome = PermissionOutcome.GRANTED if granted else PermissionOutcome.DENIED
        logger.info(f"[gate] permission {outcome.value}")
        return outcome


class ConsolePrompter:
    """
    Prompt provider backed by the CAMERA_PERMISSION setting and the terminal.

    - "granted": the capability is already held, no prompt
    - "ask": ask once on stdin (y/yes grants; anything else, EOF included, denies)
    - "denied": every prompt is answered with a refusal without asking

    A granted answer is remembered for the rest of the process.
    """

    def __init__(self, mode: str = "ask", input_fn: Optional[Callable[[str], str]] = None):
        self.mode = mode
        self._input = input_fn or input
        self._granted = mode == "granted"

    def check_granted(self) -> bool:
        return self._granted

    def prompt_once(self, callback: Callable[[bool], None]) -> None:
        t = threading.Thread(target=self._ask, args=(callback,), name="permission-prompt", daemon=True)
        t.start()

    def _ask(self, callback: Callable[[bool], None]) -> None:
        if self.mode == "denied":
            callback(False)
            return
        try:
            reply = self._input(PROMPT_TEXT)
        except (EOFError, OSError):
            logger.debug("[gate] no answer on stdin, treating as denied")
            reply = ""
        granted = (reply or "").strip().lower() in ("y", "yes")
        if granted:
            self._granted = True
        callback(granted)
