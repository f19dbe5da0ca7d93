import threading

from flask import current_app
from nectar.hive import Hive

from .models import Checkpoint, db

CLOCK_ROW_ID = 1


def _clock_row() -> Checkpoint:
    ck = db.session.get(Checkpoint, CLOCK_ROW_ID)
    if ck is None:
        ck = Checkpoint(id=CLOCK_ROW_ID, last_block=0)
        db.session.add(ck)
        db.session.commit()
    return ck


def current_height() -> int:
    """Clock height the ledger runs against (last block seen by the watcher)."""
    return int(_clock_row().last_block or 0)


def advance_to(height: int) -> int:
    """Move the clock forward to `height`. Never moves it backwards.

    Returns the resulting clock height.
    """
    ck = _clock_row()
    if height > (ck.last_block or 0):
        ck.last_block = int(height)
        db.session.commit()
    return ck.last_block


def _get_hive_instance():
    """Return a Hive instance (custom nodes when configured)."""
    nodes = current_app.config.get("HIVE_NODES")
    try:
        if nodes:
            hv = Hive(node=[n.strip() for n in nodes.split(",") if n.strip()])
            current_app.logger.info(
                "[watcher] initialized Hive instance with custom nodes: %s", nodes
            )
            return hv
    except Exception:
        current_app.logger.warning(
            "[watcher] failed to init Hive with custom nodes, falling back to default"
        )
    return Hive()


def _get_head_block_num(hv: Hive) -> int:
    props = hv.rpc.get_dynamic_global_properties()
    # head_block_number or last_irreversible_block_num may be present
    return props.get("head_block_number") or props.get("last_irreversible_block_num")


def _watcher_loop(app, stop_event: threading.Event):
    """Follow the Hive head block and advance the ledger clock.

    Accepts a Flask `app` instance to create an application context inside
    the thread.
    """
    with app.app_context():
        hv = _get_hive_instance()
        poll_interval = float(current_app.config.get("WATCHER_SLEEP_SEC", 3.0))
        current_app.logger.info(
            "[watcher] loop started (poll_interval=%.2fs)", poll_interval
        )
        while not stop_event.is_set():
            try:
                head = _get_head_block_num(hv) or 0
                before = current_height()
                after = advance_to(head)
                if after != before:
                    current_app.logger.debug(
                        "[watcher] clock %s -> %s (head=%s)", before, after, head
                    )
            except Exception:
                current_app.logger.exception("[watcher] error in loop; backing off")
                db.session.rollback()
                stop_event.wait(2.0)
            finally:
                db.session.remove()
            stop_event.wait(poll_interval)


_watcher_stop_event = threading.Event()
_watcher_thread = None


def start_clock_watcher(app):
    """Start the background clock watcher thread (gated by CLOCK_WATCHER)."""
    if not app.config.get("CLOCK_WATCHER", True):
        return
    global _watcher_thread
    _watcher_stop_event.clear()
    if _watcher_thread is not None and _watcher_thread.is_alive():
        return
    _watcher_thread = threading.Thread(
        target=_watcher_loop, args=(app, _watcher_stop_event), daemon=True
    )
    _watcher_thread.start()


def stop_clock_watcher(timeout: float = 2.0):
    """Signal the watcher to stop and wait briefly for it to exit."""
    _watcher_stop_event.set()
    if _watcher_thread is not None and _watcher_thread.is_alive():
        _watcher_thread.join(timeout=timeout)
