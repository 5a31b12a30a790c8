from __future__ import annotations

import os
import queue
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, replace
from textwrap import shorten
from typing import Callable, Mapping, Optional, Sequence

from .logging_utils import get_logger


logger = get_logger(__name__)


_BRAILLE_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
_ASCII_FRAMES = ["|", "/", "-", "\\"]


@dataclass(frozen=True)
class ProgressSettings:
    """
    CLI 진행 표시 설정. 호출부에서 명시적으로 넘긴다.
    """

    show: bool = True
    idle_seconds: float = 2.0
    style: str = "braille"  # braille | ascii
    interval: float = 0.12

    @classmethod
    def from_env(cls, base: Optional["ProgressSettings"] = None) -> "ProgressSettings":
        settings = base or cls()
        show = _parse_env_bool("CLI_SHOW_PROGRESS")
        idle = _parse_env_float("CLI_PROGRESS_IDLE_SECONDS")
        style = os.getenv("CLI_PROGRESS_STYLE")
        interval = _parse_env_float("CLI_PROGRESS_INTERVAL_SECONDS")
        return replace(
            settings,
            show=settings.show if show is None else show,
            idle_seconds=settings.idle_seconds if idle is None else idle,
            style=style or settings.style,
            interval=settings.interval if interval is None else interval,
        )


def _parse_env_bool(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _is_tty(stream) -> bool:  # noqa: ANN001
    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except ValueError:
        # 닫힌 스트림
        return False


def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:0.1f}s"
    minutes = int(seconds // 60)
    sec = int(seconds % 60)
    return f"{minutes}m{sec:02d}s"


def _default_progress_message(cmd: Sequence[str]) -> str:
    return shorten(" ".join(cmd), width=72, placeholder="…")


class _IdleProgressIndicator:
    """
    일정 시간 출력이 없을 때만 stderr 한 줄에 스피너 + 메시지 + 경과시간을 그린다.
    """

    def __init__(self, message: str, settings: ProgressSettings, *, stream=None) -> None:  # noqa: ANN001
        self._message = message
        self._stream = stream if stream is not None else sys.stderr
        self._frames = _ASCII_FRAMES if settings.style.strip().lower() == "ascii" else _BRAILLE_FRAMES
        self._interval = max(float(settings.interval), 0.02)
        self._idle_seconds = max(float(settings.idle_seconds), 0.0)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_len = 0
        self._shown = False

    def _render(self, frame_idx: int, elapsed_seconds: float) -> None:
        frame = self._frames[frame_idx % len(self._frames)]
        text = f"{frame} {self._message}  {_format_elapsed(elapsed_seconds)}"
        self._last_len = max(self._last_len, len(text))
        self._stream.write("\r" + text)
        self._stream.flush()
        self._shown = True

    def clear(self) -> None:
        if not self._shown or self._last_len <= 0:
            return
        self._stream.write("\r" + (" " * self._last_len) + "\r")
        self._stream.flush()
        self._shown = False

    def start(self, *, start_time: float, last_activity: Callable[[], float]) -> None:
        if self._thread is not None:
            return

        def _run() -> None:
            idx = 0
            while not self._stop.is_set():
                now = time.monotonic()
                idle = now - last_activity()
                if idle < self._idle_seconds:
                    self.clear()
                    time.sleep(min(self._interval, max(self._idle_seconds - idle, 0.02)))
                    continue
                self._render(idx, now - start_time)
                idx += 1
                time.sleep(self._interval)

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        self.clear()


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str


def _not_found_error(cmd: Sequence[str]) -> RuntimeError:
    return RuntimeError(
        f"필요한 명령을 찾을 수 없습니다: {cmd[0]} (sam/aws CLI 가 설치되어 있는지 확인하세요)"
    )


def _timeout_error(cmd: Sequence[str], timeout: float | None) -> RuntimeError:
    return RuntimeError(f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {' '.join(cmd)}")


def run_command(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = 1800.0,
    stream_output: bool = False,
    progress_message: str | None = None,
    progress: ProgressSettings | None = None,
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    - stream_output=False: stdout/stderr 캡처, 실패 시 요약을 RuntimeError 메시지에 포함
    - stream_output=True : stdout/stderr 를 합쳐 실시간으로 터미널에 흘린다 (sam deploy 진행 확인용)
    """
    logger.info("명령 실행: %s", " ".join(cmd))

    settings = progress if progress is not None else ProgressSettings.from_env()
    message = progress_message or _default_progress_message(cmd)
    indicator: _IdleProgressIndicator | None = None
    if settings.show and _is_tty(sys.stderr):
        indicator = _IdleProgressIndicator(message, settings, stream=sys.stderr)

    if stream_output:
        return _run_streaming(cmd, cwd=cwd, env=env, timeout=timeout, indicator=indicator)

    started = time.monotonic()
    if indicator is not None:
        indicator.start(start_time=started, last_activity=lambda: started)

    try:
        result = subprocess.run(  # noqa: S603
            list(cmd),
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as e:
        raise _not_found_error(cmd) from e
    except subprocess.TimeoutExpired as e:
        raise _timeout_error(cmd, timeout) from e
    except subprocess.CalledProcessError as e:
        stdout = (e.stdout or "").strip()
        stderr = (e.stderr or "").strip()
        detail = ""
        if stderr:
            detail = "\nstderr:\n" + shorten(stderr, width=2000)
        elif stdout:
            detail = "\nstdout:\n" + shorten(stdout, width=2000)
        raise RuntimeError(
            f"명령 실행 실패: {' '.join(cmd)} (exit={e.returncode}){detail}"
        ) from e
    finally:
        if indicator is not None:
            indicator.stop()

    if result.stdout:
        logger.debug("명령 stdout: %s", shorten(result.stdout.strip(), width=2000))
    if result.stderr:
        logger.debug("명령 stderr: %s", shorten(result.stderr.strip(), width=2000))
    return RunResult(returncode=result.returncode, stdout=result.stdout or "", stderr=result.stderr or "")


def _run_streaming(
    cmd: Sequence[str],
    *,
    cwd: str | None,
    env: Mapping[str, str] | None,
    timeout: float | None,
    indicator: _IdleProgressIndicator | None,
) -> RunResult:
    # sam 은 진행 로그 대부분을 stderr 로 내보내므로 STDOUT 으로 합친다.
    try:
        proc = subprocess.Popen(  # noqa: S603
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise _not_found_error(cmd) from e

    out_lines: list[str] = []
    started = time.monotonic()
    deadline = None if timeout is None else started + float(timeout)

    activity_lock = threading.Lock()
    last_activity = started

    def _get_last_activity() -> float:
        with activity_lock:
            return last_activity

    if indicator is not None:
        indicator.start(start_time=started, last_activity=_get_last_activity)

    q: queue.Queue[str | None] = queue.Queue()

    def _reader() -> None:
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                q.put(line)
        finally:
            q.put(None)

    reader_thread = threading.Thread(target=_reader, daemon=True)
    reader_thread.start()

    try:
        while True:
            now = time.monotonic()
            if deadline is not None and now >= deadline:
                proc.kill()
                raise _timeout_error(cmd, timeout)

            wait = 0.1 if deadline is None else min(0.1, max(deadline - now, 0.0))
            try:
                item = q.get(timeout=wait)
            except queue.Empty:
                continue

            if item is None:
                break

            if indicator is not None:
                indicator.clear()
            out_lines.append(item)
            sys.stdout.write(item)
            sys.stdout.flush()
            with activity_lock:
                last_activity = time.monotonic()

        reader_thread.join(timeout=1.0)
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        returncode = proc.wait(timeout=remaining)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        raise _timeout_error(cmd, timeout) from e
    finally:
        if proc.stdout is not None:
            proc.stdout.close()
        if indicator is not None:
            indicator.stop()

    if returncode != 0:
        combined = "".join(out_lines).strip()
        detail = "\nstdout/stderr:\n" + shorten(combined, width=2000) if combined else ""
        raise RuntimeError(
            f"명령 실행 실패: {' '.join(cmd)} (exit={returncode}){detail}"
        )

    return RunResult(returncode=returncode, stdout="".join(out_lines), stderr="")
