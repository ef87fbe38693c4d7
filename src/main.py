"""
Main entry point for running the receipt storage engine.
"""

import faulthandler
import os
import sys
import traceback
import threading
from datetime import datetime
from pathlib import Path

from orchestrator.main import main
from utils.instance_guard import InstanceLockError, acquire_instance_lock

DEFAULT_LOCK_PATH = Path("data") / "receipt_vault.lock"
# Commands that never move or delete files run without the storage lock.
READ_ONLY_COMMANDS = {"show-pattern", "watch-status"}


def _enable_crash_diagnostics() -> None:
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    crash_log = logs_dir / f"crash_traceback_{datetime.utcnow().strftime('%Y%m%d')}.log"
    crash_stream = crash_log.open("a", encoding="utf-8")
    faulthandler.enable(file=crash_stream, all_threads=True)

    def _hook(exc_type, exc, tb):
        with crash_log.open("a", encoding="utf-8") as handle:
            handle.write("\n")
            handle.write(datetime.utcnow().isoformat() + " Unhandled receipt_vault exception\n")
            traceback.print_exception(exc_type, exc, tb, file=handle)
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook

    def _thread_hook(args):
        _hook(args.exc_type, args.exc_value, args.exc_traceback)

    threading.excepthook = _thread_hook


def _needs_lock(argv: list[str]) -> bool:
    if os.environ.get("RECEIPT_VAULT_ALLOW_MULTI_INSTANCE") == "1":
        return False
    return not any(arg in READ_ONLY_COMMANDS for arg in argv)


if __name__ == "__main__":
    _enable_crash_diagnostics()
    argv = sys.argv[1:]
    _lock = None
    if _needs_lock(argv):
        lock_path = Path(os.environ.get("RECEIPT_VAULT_LOCK_FILE", DEFAULT_LOCK_PATH))
        try:
            _lock = acquire_instance_lock(lock_path, command=" ".join(argv))
        except InstanceLockError as exc:
            message = (
                f"ERROR: {exc}.\n"
                "Another receipt_vault command is moving files. Wait for it to finish or set "
                "RECEIPT_VAULT_ALLOW_MULTI_INSTANCE=1 to override.\n"
            )
            print(message, file=sys.stderr)
            raise SystemExit(2) from exc
    try:
        exit_code = main(argv)
    finally:
        if _lock is not None:
            _lock.release()
    raise SystemExit(exit_code)
