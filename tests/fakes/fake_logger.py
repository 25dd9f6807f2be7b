# SPDX-License-Identifier: LGPL-3.0-or-later
import logging
import threading


class FakeLogger:
    def __init__(self):
        self.records = []
        self._lock = threading.Lock()

    def _log(self, level, msg, *a):
        if a:
            try:
                msg = str(msg) % a
            except (TypeError, ValueError):
                msg = f"{msg} {a}"
        with self._lock:
            self.records.append((level, str(msg)))

    def info(self, msg, *a, **k): self._log("info", msg, *a)
    def warning(self, msg, *a, **k): self._log("warning", msg, *a)
    def error(self, msg, *a, **k): self._log("error", msg, *a)
    def debug(self, msg, *a, **k): self._log("debug", msg, *a)

    def log(self, level, msg, *a, **k):
        self._log(logging.getLevelName(level).lower(), msg, *a)

    def isEnabledFor(self, _lvl):
        return True

    def messages(self, level=None):
        return [m for (lvl, m) in self.records if level is None or lvl == level]
