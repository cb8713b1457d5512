"""Tests for WebM encoding: dummy frames → chunked sink and flushed file."""

import av

from services.recorder import ChunkSink, FrameWriter

WEBM_MAGIC = b"\x1a\x45\xdf\xa3"


def _dummy_video_frame(width: int = 64, height: int = 64) -> av.VideoFrame:
    """Create a minimal av.VideoFrame for testing (no numpy)."""
    frame = av.VideoFrame(width, height, "rgb24")
    frame.planes[0].update(b"\x80" * (width * height * 3))
    return frame


def test_frame_writer_flush_without_frames_is_empty() -> None:
    writer = FrameWriter(fps=15)
    assert writer.flush() == b""


def test_frame_writer_flushes_several_frames_as_webm() -> None:
    writer = FrameWriter(fps=15)
    for _ in range(3):
        writer.add_frame(_dummy_video_frame())

    data = writer.drain() + writer.flush()
    assert data[:4] == WEBM_MAGIC


def test_frame_writer_single_frame_produces_webm() -> None:
    writer = FrameWriter(fps=15)
    writer.add_frame(_dummy_video_frame(64, 64))
    data = writer.flush()
    assert len(data) > 0
    assert data[:4] == WEBM_MAGIC


def test_drained_chunks_concatenate_into_one_stream() -> None:
    sink = ChunkSink()
    writer = FrameWriter(fps=15, sink=sink)
    chunks: list[bytes] = []
    for _ in range(5):
        writer.add_frame(_dummy_video_frame())
        chunks.append(writer.drain())
    chunks.append(writer.flush())

    blob = b"".join(chunks)
    assert blob[:4] == WEBM_MAGIC
    assert len(blob) == sink.total_bytes
    # Only the first non-empty chunk carries the EBML header.
    non_empty = [chunk for chunk in chunks if chunk]
    assert non_empty[0][:4] == WEBM_MAGIC
    assert all(not chunk.startswith(WEBM_MAGIC) for chunk in non_empty[1:])
