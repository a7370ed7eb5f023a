"""FrameSource: decode RGB frames at requested timestamps via a persistent FFmpeg pipe with PTS sync."""

import json
import logging
import math
import re
import shlex
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from queue import Empty, Queue
from typing import Iterator

import numpy as np

from scenescout.models.entities import FrameSample
from scenescout.video.errors import DecodeError, SeekError, SyncError

_log = logging.getLogger(__name__)

PTS_REGEX = re.compile(r"pts_time:(-?[\d.]+)")
PTS_QUEUE_TIMEOUT = 10.0
PROBE_TIMEOUT_SEC = 30
DEFAULT_OUT_WIDTH = 160
DEFAULT_FPS = 25.0
SEEK_GAP_SEC = 5.0
# Container durations are rounded; requests this far past the reported duration are still served.
DURATION_EPSILON_SEC = 0.05
_STDERR_TAIL_MAX_LINES = 60
_PTS_POLL_SEC = 0.05


@dataclass(frozen=True)
class VideoInfo:
    """Stream geometry and timing reported by ffprobe."""

    width: int
    height: int
    fps: float
    duration: float


class FrameSource(ABC):
    """
    Minimal decoder interface: duration() and frame_at(timestamp).

    Callers must issue frame_at() requests in non-decreasing timestamp order; backends may serve
    out-of-order requests but only at the cost of a re-seek. No two frame_at() calls on the same
    instance may be in flight concurrently.
    """

    @abstractmethod
    def duration(self) -> float:
        """Video duration in seconds."""

    @abstractmethod
    def frame_at(self, timestamp: float) -> FrameSample:
        """Decode the first frame at or after timestamp. Raises SeekError / DecodeError."""

    def close(self) -> None:
        """Release decoder resources. Safe to call more than once."""

    def __enter__(self) -> "FrameSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _parse_rate(value: str | None) -> float:
    """Parse an ffprobe rational such as '30000/1001'. Returns 0.0 when missing or invalid."""
    if not value:
        return 0.0
    num, _, den = value.partition("/")
    try:
        n = float(num)
        d = float(den) if den else 1.0
    except ValueError:
        return 0.0
    if d == 0:
        return 0.0
    return n / d


def probe_video(input_path: Path) -> VideoInfo:
    """Run ffprobe for width, height, frame rate and duration. Raises DecodeError when unreadable."""
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height,avg_frame_rate,r_frame_rate,duration:format=duration",
        "-of",
        "json",
        str(input_path),
    ]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=PROBE_TIMEOUT_SEC,
        )
    except subprocess.CalledProcessError as e:
        raise DecodeError(f"ffprobe failed for {input_path}: {(e.stderr or '').strip()}") from e
    except (OSError, subprocess.TimeoutExpired) as e:
        raise DecodeError(f"ffprobe could not run for {input_path}: {e}") from e

    try:
        data = json.loads(result.stdout or "{}")
    except ValueError as e:
        raise DecodeError(f"ffprobe unexpected output: {result.stdout!r}") from e
    streams = data.get("streams") or []
    if not streams:
        raise DecodeError(f"ffprobe returned no video stream for {input_path}")
    stream = streams[0]
    try:
        width = int(stream.get("width") or 0)
        height = int(stream.get("height") or 0)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"ffprobe unexpected dimensions: {stream!r}") from e
    if width <= 0 or height <= 0:
        raise DecodeError(f"ffprobe invalid dimensions: {width}x{height}")

    fps = _parse_rate(stream.get("avg_frame_rate")) or _parse_rate(stream.get("r_frame_rate"))
    if fps <= 0:
        fps = DEFAULT_FPS

    duration = 0.0
    for raw in ((data.get("format") or {}).get("duration"), stream.get("duration")):
        try:
            duration = float(raw)
        except (TypeError, ValueError):
            continue
        if duration > 0:
            break
    if not math.isfinite(duration) or duration <= 0:
        raise DecodeError(f"ffprobe reported no usable duration for {input_path}")
    return VideoInfo(width=width, height=height, fps=fps, duration=duration)


def _next_pts(pts_queue: "Queue[float]", stderr_finished: threading.Event) -> float | None:
    """
    PTS for the frame just read from stdout.

    Returns None once stderr has ended with no PTS left (callers fall back to the fps cadence).
    Raises SyncError when nothing arrives within PTS_QUEUE_TIMEOUT while stderr is still open.
    """
    waited = 0.0
    while True:
        try:
            return pts_queue.get(timeout=_PTS_POLL_SEC)
        except Empty:
            if stderr_finished.is_set() and pts_queue.empty():
                return None
            waited += _PTS_POLL_SEC
            if waited >= PTS_QUEUE_TIMEOUT:
                raise SyncError(
                    "no PTS from stderr within timeout (FFmpeg hung or stderr thread died)"
                )


def _output_size(src_width: int, src_height: int, out_width: int) -> tuple[int, int]:
    """Compute even (width, height) for the decoded stream, never upscaling.

    Dimensions are forced to even (round down) so Python and FFmpeg agree on frame_byte_size;
    the source passes explicit dimensions to FFmpeg (scale=w:h) rather than scale=-2.
    """
    if src_width <= 0 or src_height <= 0:
        raise ValueError("source dimensions must be positive")
    width = min(out_width, src_width)
    width = max(2, (width // 2) * 2)
    height = max(2, (int(width * src_height / src_width) // 2) * 2)
    return width, height


class FFmpegFrameSource(FrameSource):
    """
    Frame decoder backed by one long-lived FFmpeg rawvideo pipe.

    frame_at() reads forward through the pipe until the first frame whose PTS reaches the
    requested timestamp. Backward requests and forward jumps longer than seek_gap_sec restart
    FFmpeg with a fast input seek (-ss before -i), so monotonic sampling stays sequential.
    """

    def __init__(
        self,
        input_path: str | Path,
        *,
        out_width: int = DEFAULT_OUT_WIDTH,
        seek_gap_sec: float = SEEK_GAP_SEC,
        hwaccel: str | None = None,
        owns_input: bool = False,
    ) -> None:
        self._input_path = Path(input_path)
        self._owns_input = owns_input
        if not self._input_path.exists():
            raise DecodeError(f"video not found: {self._input_path}")
        self._info = probe_video(self._input_path)
        self._out_width, self._out_height = _output_size(
            self._info.width, self._info.height, out_width
        )
        self._frame_byte_size = self._out_width * self._out_height * 3
        self._seek_gap_sec = seek_gap_sec
        self._hwaccel = hwaccel
        self._half_frame = 0.5 / self._info.fps
        self._stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_MAX_LINES)
        self._stream: Iterator[tuple[bytes, float]] | None = None
        self._stream_start = 0.0
        self._current: tuple[bytes, float] | None = None
        self._restarts = 0
        self._closed = False

    @property
    def info(self) -> VideoInfo:
        return self._info

    @property
    def out_width(self) -> int:
        return self._out_width

    @property
    def out_height(self) -> int:
        return self._out_height

    @property
    def frame_byte_size(self) -> int:
        """Exact number of bytes per frame (width * height * 3)."""
        return self._frame_byte_size

    @property
    def restarts(self) -> int:
        """Number of times the FFmpeg pipe was (re)started."""
        return self._restarts

    def duration(self) -> float:
        return self._info.duration

    def ffmpeg_cmd(self, start: float = 0.0, *, output_mode: str = "pipe") -> list[str]:
        """
        Return the exact FFmpeg argv used to decode from start.

        Args:
            start: input seek position in seconds (omitted when 0).
            output_mode: 'pipe' (rawvideo to stdout) or 'null' (decode-only repro).
        """
        cmd: list[str] = [
            "ffmpeg",
            "-hide_banner",
            "-loglevel",
            "info",
            "-nostdin",
        ]
        if self._hwaccel is not None:
            cmd += ["-hwaccel", str(self._hwaccel)]
        if start > 0:
            cmd.extend(["-ss", f"{start:.6f}"])
        cmd.extend(
            [
                "-i",
                str(self._input_path),
                "-an",
                "-vf",
                f"scale={self._out_width}:{self._out_height},showinfo",
            ]
        )
        if output_mode == "pipe":
            cmd.extend(["-f", "rawvideo", "-pix_fmt", "rgb24", "pipe:1"])
            return cmd
        if output_mode == "null":
            cmd.extend(["-f", "null", "-"])
            return cmd
        raise ValueError(f"unknown output_mode: {output_mode!r}")

    def ffmpeg_repro_command(self, start: float = 0.0) -> str:
        """Copy/paste repro command line for the decode pipeline (null output)."""
        return " ".join(shlex.quote(str(c)) for c in self.ffmpeg_cmd(start, output_mode="null"))

    def stderr_tail(self) -> str:
        """Return the last N stderr lines observed from FFmpeg (best-effort)."""
        return "\n".join(self._stderr_tail).strip()

    def frame_at(self, timestamp: float) -> FrameSample:
        if self._closed:
            raise DecodeError("frame source is closed", timestamp=timestamp)
        if timestamp < 0 or timestamp > self._info.duration + DURATION_EPSILON_SEC:
            raise SeekError(
                f"timestamp outside [0, {self._info.duration:.3f}]", timestamp=timestamp
            )
        if self._needs_restart(timestamp):
            self._open_stream(timestamp)
        assert self._stream is not None

        target = timestamp - self._half_frame
        while self._current is None or self._current[1] < target:
            try:
                nxt = next(self._stream, None)
            except SyncError as e:
                raise SyncError(
                    f"{e.message}; ffmpeg stderr tail:\n{self.stderr_tail()}", timestamp=timestamp
                ) from e
            if nxt is None:
                # EOF before the target: the last decoded frame is the nearest representable one.
                if self._current is None:
                    raise DecodeError(
                        f"no frames decoded from {self._input_path}. Repro: "
                        f"{self.ffmpeg_repro_command(self._stream_start)}\n{self.stderr_tail()}",
                        timestamp=timestamp,
                    )
                break
            self._current = nxt

        frame_bytes, pts = self._current
        pixels = np.frombuffer(frame_bytes, dtype=np.uint8).reshape(
            (self._out_height, self._out_width, 3)
        )
        return FrameSample(
            frame_index=max(0, int(round(pts * self._info.fps))),
            timestamp=max(0.0, pts),
            pixels=pixels,
        )

    def _needs_restart(self, timestamp: float) -> bool:
        if self._stream is None:
            return True
        position = self._current[1] if self._current is not None else self._stream_start
        if timestamp < position - self._half_frame:
            _log.debug("Backward request %.3fs < %.3fs; re-seeking %s", timestamp, position, self._input_path)
            return True
        return timestamp - position > self._seek_gap_sec

    def _open_stream(self, start: float) -> None:
        self._close_stream()
        self._stream_start = start
        self._current = None
        self._stream = self._iter_frames(start)
        self._restarts += 1

    def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.close()  # type: ignore[attr-defined]

    def _iter_frames(self, start: float) -> Iterator[tuple[bytes, float]]:
        """Iterate over (frame_bytes, absolute_pts) from start. One FFmpeg process plus a stderr thread."""
        pts_queue: Queue[float] = Queue()
        stderr_finished = threading.Event()

        def read_stderr(process: subprocess.Popen[bytes]) -> None:
            if process.stderr is None:
                stderr_finished.set()
                return
            try:
                for line in iter(process.stderr.readline, b""):
                    line_str = line.decode("utf-8", errors="replace").rstrip("\n")
                    if line_str:
                        self._stderr_tail.append(line_str)
                    if "showinfo" in line_str and "pts_time:" in line_str:
                        m = PTS_REGEX.search(line_str)
                        if m:
                            try:
                                pts_queue.put(float(m.group(1)))
                            except ValueError:
                                pass
            finally:
                stderr_finished.set()

        cmd = self.ffmpeg_cmd(start, output_mode="pipe")
        _log.debug("Starting decoder at %.3fs: %s", start, shlex.join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as e:
            raise DecodeError(f"could not start ffmpeg: {e}", timestamp=start) from e
        stderr_thread = threading.Thread(target=read_stderr, args=(proc,), daemon=True)
        stderr_thread.start()

        try:
            buffer = bytearray(self._frame_byte_size)
            # -ss before -i resets output timestamps to zero at the seek point.
            last_rel_pts: float = -1.0 / self._info.fps

            while True:
                total = 0
                while total < self._frame_byte_size:
                    n = proc.stdout.readinto(  # type: ignore[union-attr]
                        memoryview(buffer)[total:]
                    )
                    if not n:
                        break
                    total += n
                if total < self._frame_byte_size:
                    break

                frame_bytes = bytes(buffer)

                rel_pts = _next_pts(pts_queue, stderr_finished)
                if rel_pts is None:
                    last_rel_pts += 1.0 / self._info.fps
                else:
                    last_rel_pts = rel_pts
                yield (frame_bytes, start + last_rel_pts)
        finally:
            try:
                proc.terminate()
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            except OSError:
                pass

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_stream()
        if self._owns_input:
            try:
                self._input_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                _log.warning("Could not remove spooled video %s: %s", self._input_path, e)


def open_frame_source(
    video: str | Path | bytes,
    *,
    out_width: int = DEFAULT_OUT_WIDTH,
    seek_gap_sec: float = SEEK_GAP_SEC,
    hwaccel: str | None = None,
) -> FFmpegFrameSource:
    """
    Open an FFmpegFrameSource for a path or raw video bytes.

    Bytes are spooled to a temporary file (FFmpeg needs a seekable input); the returned source
    owns that file and deletes it on close().
    """
    if isinstance(video, (bytes, bytearray, memoryview)):
        if len(video) == 0:
            raise DecodeError("empty video input")
        with tempfile.NamedTemporaryFile(prefix="scenescout_", suffix=".video", delete=False) as tmp:
            tmp.write(video)
            spooled = Path(tmp.name)
        try:
            return FFmpegFrameSource(
                spooled,
                out_width=out_width,
                seek_gap_sec=seek_gap_sec,
                hwaccel=hwaccel,
                owns_input=True,
            )
        except BaseException:
            spooled.unlink(missing_ok=True)
            raise
    return FFmpegFrameSource(
        video,
        out_width=out_width,
        seek_gap_sec=seek_gap_sec,
        hwaccel=hwaccel,
    )
