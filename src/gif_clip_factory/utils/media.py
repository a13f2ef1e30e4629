from __future__ import annotations

import queue
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from pathlib import Path


class CommandError(RuntimeError):
    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CommandCancelled(CommandError):
    pass


class CommandTimeout(CommandError):
    pass


def _stop(proc: subprocess.Popen, grace_sec: float = 3.0) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=grace_sec)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def run_command(cmd: list[str], cancel_event=None, timeout_sec: float | None = None) -> str:
    """Run a short-lived command and return its stdout."""
    if cancel_event is None:
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_sec)
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeout(f"Command timed out after {timeout_sec}s: {cmd[0]}") from exc
        except OSError as exc:
            raise CommandError(f"Command could not start: {cmd[0]}: {exc}") from exc
        if proc.returncode != 0:
            raise CommandError(
                f"Command failed ({proc.returncode}): {' '.join(cmd)}\n{proc.stderr}",
                returncode=proc.returncode,
                stderr=proc.stderr,
            )
        return proc.stdout

    try:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except OSError as exc:
        raise CommandError(f"Command could not start: {cmd[0]}: {exc}") from exc
    started = time.monotonic()
    try:
        while proc.poll() is None:
            if cancel_event.is_set():
                _stop(proc)
                raise CommandCancelled(f"Command cancelled: {cmd[0]}")
            if timeout_sec is not None and time.monotonic() - started > timeout_sec:
                _stop(proc)
                raise CommandTimeout(f"Command timed out after {timeout_sec}s: {cmd[0]}")
            time.sleep(0.2)

        stdout, stderr = proc.communicate()
        if proc.returncode != 0:
            raise CommandError(
                f"Command failed ({proc.returncode}): {' '.join(cmd)}\n{stderr}",
                returncode=proc.returncode,
                stderr=stderr,
            )
        return stdout
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def stream_command(
    cmd: list[str],
    on_line: Callable[[str], None] | None = None,
    cancel_event=None,
    timeout_sec: float | None = None,
    stall_timeout_sec: float | None = None,
    poll_interval_sec: float = 0.2,
) -> None:
    """Run a long command, handing each stdout line to ``on_line`` as it arrives.

    stdout and stderr are drained on reader threads so a chatty engine never
    blocks on a full pipe. The process is terminated on cancel, on the overall
    ``timeout_sec`` and when stdout stays silent for ``stall_timeout_sec``.
    """
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
        )
    except OSError as exc:
        raise CommandError(f"Command could not start: {cmd[0]}: {exc}") from exc

    lines: queue.Queue[str | None] = queue.Queue()
    stderr_tail: deque[str] = deque(maxlen=40)

    def pump_stdout() -> None:
        for raw in proc.stdout:
            lines.put(raw.rstrip("\r\n"))
        lines.put(None)

    def pump_stderr() -> None:
        for raw in proc.stderr:
            stderr_tail.append(raw.rstrip("\r\n"))

    readers = [
        threading.Thread(target=pump_stdout, daemon=True),
        threading.Thread(target=pump_stderr, daemon=True),
    ]
    for reader in readers:
        reader.start()

    started = time.monotonic()
    last_activity = started
    stdout_closed = False
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                _stop(proc)
                raise CommandCancelled(f"Command cancelled: {cmd[0]}")
            now = time.monotonic()
            if timeout_sec is not None and now - started > timeout_sec:
                _stop(proc)
                raise CommandTimeout(f"Command timed out after {timeout_sec}s: {cmd[0]}")
            if stall_timeout_sec is not None and now - last_activity > stall_timeout_sec:
                _stop(proc)
                raise CommandTimeout(f"Command produced no output for {stall_timeout_sec}s: {cmd[0]}")

            try:
                line = lines.get(timeout=poll_interval_sec)
            except queue.Empty:
                if stdout_closed and proc.poll() is not None:
                    break
                continue

            if line is None:
                stdout_closed = True
                continue
            last_activity = time.monotonic()
            if on_line:
                on_line(line)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        for reader in readers:
            reader.join(timeout=2)

    if proc.returncode != 0:
        tail = "\n".join(stderr_tail)
        raise CommandError(
            f"Command failed ({proc.returncode}): {cmd[0]}\n{tail}",
            returncode=proc.returncode,
            stderr=tail,
        )


def extract_audio(ffmpeg_bin: str, input_video: Path, output_wav: Path, timeout_sec: float | None = None) -> None:
    cmd = [
        ffmpeg_bin,
        "-y",
        "-i",
        str(input_video),
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ac",
        "1",
        "-ar",
        "16000",
        str(output_wav),
    ]
    run_command(cmd, timeout_sec=timeout_sec)
