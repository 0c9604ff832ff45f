"""Run the face-count watcher against the local webcam.

Usage:
    python scripts/lurk.py

Configuration comes from the environment (see couchlurker/config.py), e.g.
    CAMERA_PERMISSION=granted CAPTURE_PERIOD=2 python scripts/lurk.py

Press Ctrl+C to stop.
"""
import asyncio
import logging
import signal

from couchlurker.activation import build_activation
from couchlurker.config import Settings
from couchlurker.lifecycle import HostLifecycle

logger = logging.getLogger("couchlurker.host")


async def run_host(settings: Settings) -> int:
    lifecycle = HostLifecycle("lurk")
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lifecycle.teardown)
        except (NotImplementedError, RuntimeError):
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    activation = build_activation(settings, lifecycle)
    try:
        error = await activation.run()
    except asyncio.CancelledError:
        logger.info("[host] stopped")
        return 0
    if error is not None:
        logger.error(f"[host] watcher ended: {error}")
        return 1
    return 0


def main() -> int:
    s = Settings()
    logging.basicConfig(level=s.LOG_LEVEL)
    try:
        return asyncio.run(run_host(s))
    except KeyboardInterrupt:
        return 0


if __name__ == '__main__':
    raise SystemExit(main())
