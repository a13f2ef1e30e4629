from __future__ import annotations

import re
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import replace
from pathlib import Path

from gif_clip_factory.domain.models import CleanupTarget


class RetentionSweeper:
    """Deletes aged files from the working directories.

    A sweep only looks at regular files directly inside a target directory.
    A file is removed when its mtime is strictly older than
    ``now - max_age_minutes``; one sitting exactly on the cutoff is kept.
    Per-file failures are logged and skipped.
    """

    def __init__(
        self,
        targets: list[CleanupTarget],
        interval_minutes: float = 30,
        min_safe_age_minutes: float = 0,
        is_protected: Callable[[Path], bool] | None = None,
        logger=None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.targets = list(targets)
        self.interval_minutes = interval_minutes
        self.min_safe_age_minutes = min_safe_age_minutes
        self.is_protected = is_protected
        self.logger = logger
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def ensure_directories(self, extra: Iterable[Path] = ()) -> None:
        for directory in [*(t.directory for t in self.targets), *extra]:
            directory.mkdir(parents=True, exist_ok=True)

    def sweep(self, target: CleanupTarget) -> int:
        directory = target.directory
        if not directory.is_dir():
            if self.logger:
                self.logger.info("sweep.directory_missing", directory=str(directory))
            return 0

        pattern = re.compile(target.pattern, re.IGNORECASE) if target.pattern else None
        cutoff = self.clock() - target.max_age_minutes * 60
        removed = 0

        try:
            entries = list(directory.iterdir())
        except OSError as exc:
            if self.logger:
                self.logger.warning("sweep.list_failed", directory=str(directory), error=str(exc))
            return 0

        for path in entries:
            try:
                if not path.is_file() or path.is_symlink():
                    continue
                if pattern is not None and not pattern.search(path.name):
                    continue
                if self.is_protected is not None and self.is_protected(path):
                    continue
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as exc:
                if self.logger:
                    self.logger.warning("sweep.file_error", path=str(path), error=str(exc))

        if self.logger:
            self.logger.info(
                "sweep.completed",
                directory=str(directory),
                removed=removed,
                max_age_minutes=target.max_age_minutes,
            )
        return removed

    def run_once(self) -> int:
        """Periodic pass; ages are raised to ``min_safe_age_minutes`` so in-flight files survive."""
        total = 0
        for target in self.targets:
            safe = replace(target, max_age_minutes=max(target.max_age_minutes, self.min_safe_age_minutes))
            total += self.sweep(safe)
        return total

    def sweep_everything(self) -> int:
        return sum(self.sweep(replace(target, max_age_minutes=0)) for target in self.targets)

    def remove_files(self, paths: Iterable[Path]) -> int:
        removed = 0
        for path in paths:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                if self.logger:
                    self.logger.warning("sweep.file_error", path=str(path), error=str(exc))
        return removed

    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for target in self.targets:
            try:
                counts[str(target.directory)] = sum(1 for p in target.directory.iterdir() if p.is_file())
            except OSError:
                counts[str(target.directory)] = 0
        return counts

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            if self.logger:
                self.logger.info("sweep.already_running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="retention-sweeper", daemon=True)
        self._thread.start()
        if self.logger:
            self.logger.info("sweep.scheduled", interval_minutes=self.interval_minutes)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def shutdown(self) -> int:
        self.stop()
        removed = self.sweep_everything()
        if self.logger:
            self.logger.info("sweep.shutdown", removed=removed)
        return removed

    def _loop(self) -> None:
        interval_sec = max(1.0, self.interval_minutes * 60)
        while not self._stop.wait(interval_sec):
            try:
                self.run_once()
            except Exception as exc:
                if self.logger:
                    self.logger.exception("sweep.pass_failed", error=str(exc))
