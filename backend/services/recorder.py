"""Local capture: read a camera/microphone device, encode to WebM, collect chunks."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Protocol

import av
from av import AudioFrame, VideoFrame
from av.error import FFmpegError

from models.errors import CaptureError, InvalidTransitionError
from models.session import RecordingSession

logger = logging.getLogger(__name__)

# Target encoding for WebM (libvpx expects yuv420p)
WEBM_FPS = 30
WEBM_PIX_FMT = "yuv420p"
OPUS_SAMPLE_RATE = 48000
CHUNK_SECONDS = 1.0


class ChunkSink:
    """
    Write-only byte sink handed to the muxer.

    It has no seek(), so FFmpeg writes the WebM stream strictly in order and
    the drained pieces concatenate into one playable file.
    """

    def __init__(self) -> None:
        self._pending = bytearray()
        self.total_bytes = 0

    def write(self, data: bytes) -> int:
        self._pending.extend(data)
        self.total_bytes += len(data)
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = bytes(self._pending)
        self._pending.clear()
        return data


class FrameWriter:
    """
    Encodes av.VideoFrame (and optionally av.AudioFrame) instances to WebM.

    Call add_frame() / add_audio_frame() for each frame, then flush() to finish
    the stream. Output goes to `sink`; without one the writer buffers the whole
    file in memory and flush() returns it.
    """

    def __init__(self, *, fps: int = WEBM_FPS, sink: ChunkSink | None = None, with_audio: bool = False) -> None:
        self._fps = fps
        self._sink = sink or ChunkSink()
        self._with_audio = with_audio
        self._container: Any | None = None
        self._stream: Any | None = None
        self._audio_stream: Any | None = None

    def _ensure_container(self, width: int, height: int) -> None:
        if self._container is not None:
            return
        self._container = av.open(self._sink, "w", format="webm")
        self._stream = self._container.add_stream("libvpx", rate=self._fps)
        self._stream.width = width
        self._stream.height = height
        self._stream.pix_fmt = WEBM_PIX_FMT
        if self._with_audio:
            self._audio_stream = self._container.add_stream("libopus", rate=OPUS_SAMPLE_RATE)

    def add_frame(self, frame: VideoFrame) -> None:
        """Encode one video frame into the WebM stream."""
        if frame.width <= 0 or frame.height <= 0:
            return
        self._ensure_container(frame.width, frame.height)
        # Reformat to yuv420p if needed (libvpx requirement)
        if frame.format and frame.format.name != WEBM_PIX_FMT:
            frame = frame.reformat(format=WEBM_PIX_FMT)
        # Device timestamps use the input time base; let the encoder number frames.
        frame.pts = None
        assert self._stream is not None and self._container is not None
        for packet in self._stream.encode(frame):
            self._container.mux(packet)

    def add_audio_frame(self, frame: AudioFrame) -> None:
        """Encode one audio frame. Audio before the first video frame is dropped."""
        if self._audio_stream is None or self._container is None:
            return
        frame.pts = None
        for packet in self._audio_stream.encode(frame):
            self._container.mux(packet)

    def drain(self) -> bytes:
        """Bytes muxed since the previous drain()."""
        return self._sink.drain()

    def flush(self) -> bytes:
        """Flush the encoders, close the container, and return the remaining bytes."""
        if self._container is not None:
            for stream in (self._stream, self._audio_stream):
                if stream is not None:
                    for packet in stream.encode():
                        self._container.mux(packet)
            self._container.close()
            self._container = None
            self._stream = None
            self._audio_stream = None
        return self._sink.drain()


class CaptureDevice(Protocol):
    """Blocking capture device. The Recorder calls these from a worker thread."""

    def open(self) -> None: ...

    def read_chunk(self, seconds: float) -> bytes: ...

    def close(self) -> bytes: ...


class AvCaptureDevice:
    """
    Camera (+ microphone) input opened through FFmpeg's device demuxers.

    `device` / `input_format` are whatever FFmpeg expects, e.g. "/dev/video0" with
    "v4l2", "0:0" with "avfoundation", or "video=Integrated Camera" with "dshow".
    """

    def __init__(
        self,
        device: str,
        *,
        input_format: str | None = None,
        options: dict[str, str] | None = None,
    ) -> None:
        self._device = device
        self._input_format = input_format
        self._options = options or {"framerate": str(WEBM_FPS), "video_size": "1280x720"}
        self._input: Any | None = None
        self._packets: Any | None = None
        self._writer: FrameWriter | None = None

    def open(self) -> None:
        try:
            self._input = av.open(self._device, format=self._input_format, options=self._options)
        except PermissionError as exc:
            raise CaptureError(f"Access to {self._device} denied: {exc}", reason=CaptureError.PERMISSION_DENIED) from exc
        except (FFmpegError, OSError) as exc:
            raise CaptureError(f"Cannot open {self._device}: {exc}", reason=CaptureError.DEVICE_UNAVAILABLE) from exc

        video = self._input.streams.video
        audio = self._input.streams.audio
        if not video:
            self._input.close()
            self._input = None
            raise CaptureError(f"{self._device} has no video stream", reason=CaptureError.DEVICE_UNAVAILABLE)
        rate = video[0].average_rate
        fps = int(rate) if rate else WEBM_FPS
        self._writer = FrameWriter(fps=fps or WEBM_FPS, with_audio=bool(audio))
        self._packets = self._input.demux(video[0], *audio[:1])
        logger.info(
            "[recorder] Opened %s (format=%s, fps=%s, audio=%s)",
            self._device,
            self._input_format or "auto",
            fps,
            bool(audio),
        )

    def read_chunk(self, seconds: float) -> bytes:
        if self._packets is None or self._writer is None:
            raise CaptureError("Capture device is not open", reason=CaptureError.DEVICE_FAILED)
        deadline = time.monotonic() + seconds
        try:
            while time.monotonic() < deadline:
                packet = next(self._packets, None)
                if packet is None:
                    raise CaptureError(f"{self._device} stopped producing data", reason=CaptureError.DEVICE_FAILED)
                for frame in packet.decode():
                    if packet.stream.type == "video":
                        self._writer.add_frame(frame)
                    elif packet.stream.type == "audio":
                        self._writer.add_audio_frame(frame)
        except FFmpegError as exc:
            raise CaptureError(f"{self._device} read failed: {exc}", reason=CaptureError.DEVICE_FAILED) from exc
        return self._writer.drain()

    def close(self) -> bytes:
        tail = b""
        try:
            if self._writer is not None:
                tail = self._writer.flush()
        finally:
            self._writer = None
            self._packets = None
            if self._input is not None:
                self._input.close()
                self._input = None
                logger.info("[recorder] Released %s", self._device)
        return tail


class Recorder:
    """
    Owns one capture device for the length of a recording.

    start() opens the device and begins collecting a chunk every `chunk_seconds`
    of wall clock; stop() halts capture, releases the device and returns the
    finalized RecordingSession. The device is released on every exit path.
    """

    def __init__(
        self,
        device: CaptureDevice,
        *,
        chunk_seconds: float = CHUNK_SECONDS,
        on_failure: Callable[[CaptureError], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._device = device
        self._chunk_seconds = chunk_seconds
        self._on_failure = on_failure
        self._clock = clock
        self._session: RecordingSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_requested = asyncio.Event()
        self._device_open = False
        self._started_at = 0.0
        self._failure: CaptureError | None = None
        self._aborted = False

    @property
    def is_recording(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    @property
    def failure(self) -> CaptureError | None:
        return self._failure

    async def start(self, session_id: str) -> RecordingSession:
        if self._session is not None:
            raise InvalidTransitionError("Recorder already used for a session")
        try:
            await asyncio.to_thread(self._device.open)
        except CaptureError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise CaptureError(str(exc), reason=CaptureError.DEVICE_UNAVAILABLE) from exc
        self._device_open = True
        self._session = RecordingSession(session_id=session_id)
        self._started_at = self._clock()
        self._stop_requested.clear()
        self._task = asyncio.create_task(self._capture_loop(self._session))
        logger.info("[recorder] Recording started: session=%s chunk=%.1fs", session_id, self._chunk_seconds)
        return self._session

    async def stop(self) -> RecordingSession:
        """Stop capture. Calling stop() on a stopped recorder returns the same session."""
        if self._session is None:
            raise InvalidTransitionError("Recorder was never started")
        if self._failure is not None:
            raise self._failure
        if self._session.finalized:
            return self._session
        self._stop_requested.set()
        if self._task is not None:
            await self._task
        if self._failure is not None:
            raise self._failure
        self._session.finalize(self._clock() - self._started_at)
        logger.info(
            "[recorder] Recording stopped: session=%s chunks=%d bytes=%d duration=%.1fs",
            self._session.session_id,
            self._session.chunk_count,
            self._session.size_bytes,
            self._session.duration_seconds,
        )
        return self._session

    async def abort(self) -> None:
        """
        Stop capturing and drop the recording (used on reset).

        A read in progress cannot be interrupted, so this waits for the current
        chunk to come back before the device is closed.
        """
        self._aborted = True
        self._stop_requested.set()
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        await self._release(None)

    async def _capture_loop(self, session: RecordingSession) -> None:
        try:
            while not self._stop_requested.is_set():
                read = asyncio.ensure_future(asyncio.to_thread(self._device.read_chunk, self._chunk_seconds))
                try:
                    chunk = await asyncio.shield(read)
                except asyncio.CancelledError:
                    # The worker thread keeps running; close() must not overlap it.
                    await asyncio.wait({read})
                    raise
                session.append(chunk)
                logger.debug("[recorder] chunk #%d: %d bytes", session.chunk_count, len(chunk))
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, CaptureError):
                error = exc
            else:
                error = CaptureError(str(exc), reason=CaptureError.DEVICE_FAILED)
            self._failure = error
            logger.error("[recorder] Capture failed: session=%s: %s", session.session_id, error, exc_info=True)
            await self._release(session)
            session.finalize(self._clock() - self._started_at)
            if self._on_failure is not None and not self._aborted:
                self._on_failure(error)
            return
        finally:
            await self._release(session)

    async def _release(self, session: RecordingSession | None) -> None:
        if not self._device_open:
            return
        self._device_open = False
        try:
            tail = await asyncio.to_thread(self._device.close)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[recorder] Device release raised: %s", exc, exc_info=True)
            return
        if tail and session is not None and not session.finalized:
            session.append(tail)
