"""
Clock sidecar: follow the Hive head block in the foreground.

Web workers should run with CAPSULE_WATCHER=0 so that exactly one process
writes the clock row; this module is that process. It builds the app with
the in-process thread switched off and drives the same loop on the main
thread until SIGINT/SIGTERM.

  python -m capsule.watcher
  python -m capsule.watcher --interval 1.5
"""

import argparse
import signal
import threading

from dotenv import load_dotenv

from . import create_app
from .clock import _watcher_loop


def run(app, stop_event: threading.Event) -> None:
    """Advance the clock until `stop_event` is set."""
    app.logger.info(
        "[watcher] sidecar following head block every %.2fs",
        app.config["WATCHER_SLEEP_SEC"],
    )
    _watcher_loop(app, stop_event)
    app.logger.info("[watcher] sidecar stopped")


def main(argv=None):
    load_dotenv()
    ap = argparse.ArgumentParser(description="Run the ledger clock watcher")
    ap.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between head-block polls (overrides CAPSULE_WATCHER_SLEEP_SEC)",
    )
    args = ap.parse_args(argv)

    overrides = {"CLOCK_WATCHER": False}
    if args.interval is not None:
        overrides["WATCHER_SLEEP_SEC"] = args.interval
    # The loop runs on this thread, not in a daemon thread
    app = create_app(overrides)

    stop = threading.Event()

    def _handle_sig(signum, frame):
        app.logger.info("[watcher] signal %s; finishing current poll", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_sig)
    signal.signal(signal.SIGTERM, _handle_sig)
    run(app, stop)


if __name__ == "__main__":
    main()
