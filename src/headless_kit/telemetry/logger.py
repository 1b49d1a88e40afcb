"""Structured JSONL event logging for driver lifecycle runs."""
import json
import logging
import os
import time

log = logging.getLogger(__name__)


class DriverEventLogger:
    """Writes one JSON line per lifecycle event to a per-run JSONL file.

    All logging is best-effort — methods never raise exceptions.
    Supports context-manager protocol for automatic close.
    """

    def __init__(self, run_id: str, log_dir: str = "data/logs/driver_events"):
        self._run_id = run_id
        self._f = None
        try:
            os.makedirs(log_dir, exist_ok=True)
            safe_run_id = run_id.replace("/", "_").replace("\\", "_")
            path = os.path.join(log_dir, f"driver_{safe_run_id}.jsonl")
            self._f = open(path, "a", encoding="utf-8")
        except Exception as e:
            log.warning(f"DriverEventLogger: failed to open log file: {e}")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _write(self, event: dict):
        if self._f is None:
            return
        try:
            event["ts"] = time.time()
            event["run_id"] = self._run_id
            self._f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
            self._f.flush()
        except Exception as e:
            log.warning(f"DriverEventLogger: write failed: {e}")

    def log_install_stage(self, stage: str, ok: bool, detail: str = ""):
        """Log the outcome of one install step.

        ``stage`` is an ``InstallStage`` value: ``version-resolution``,
        ``download``, ``extract`` or ``rename``.
        """
        self._write({
            "event": "install_stage",
            "stage": stage,
            "ok": ok,
            "detail": detail,
        })

    def log_install_end(self, version: str, platform_tag: str, path: str | None,
                        duration: float):
        self._write({
            "event": "install_end",
            "version": version,
            "platform_tag": platform_tag,
            "path": path,
            "ok": path is not None,
            "duration": duration,
        })

    def log_process_spawn(self, command: list[str], pid: int | None):
        self._write({
            "event": "process_spawn",
            "command": command,
            "pid": pid,
        })

    def log_process_exit(self, pid: int | None, returncode: int | None, state: str):
        self._write({
            "event": "process_exit",
            "pid": pid,
            "returncode": returncode,
            "state": state,
        })

    def log_handshake_attempt(self, attempt: int, attempts: int, ok: bool,
                              error: str = ""):
        self._write({
            "event": "handshake_attempt",
            "attempt": attempt,
            "attempts": attempts,
            "ok": ok,
            "error": error,
        })

    def log_session_open(self, session_id: str, browser: str, url: str,
                         duration: float):
        self._write({
            "event": "session_open",
            "session_id": session_id,
            "browser": browser,
            "url": url,
            "duration": duration,
        })

    def log_session_stop(self, session_id: str | None, quit_ok: bool):
        self._write({
            "event": "session_stop",
            "session_id": session_id,
            "quit_ok": quit_ok,
        })

    def close(self):
        if self._f is not None:
            try:
                self._f.flush()
                self._f.close()
            except Exception:
                pass
            self._f = None
