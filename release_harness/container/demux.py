"""
Docker log stream demultiplexing.

For containers without a TTY the engine interleaves stdout and stderr in
one byte stream. Each message is prefixed with an 8-byte header:

- byte 0: stream type (0=stdin, 1=stdout, 2=stderr)
- bytes 1-3: zero padding
- bytes 4-7: payload length, big-endian

Malformed trailing frames are common when a stream is closed, so neither
the one-shot nor the incremental demuxer ever raises: anything that is not
a valid frame is handed back as raw text.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

HEADER = struct.Struct(">B3xL")
HEADER_SIZE = HEADER.size


class StreamType(IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2


_VALID_TYPES = {t.value for t in StreamType}


@dataclass(frozen=True)
class Frame:
    """One demultiplexed payload; ``stream`` is None for unframed bytes."""

    stream: StreamType | None
    payload: bytes

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")

    @property
    def stream_name(self) -> str:
        return "stderr" if self.stream == StreamType.STDERR else "stdout"


def demux_log_buffer(buffer: bytes) -> list[Frame]:
    """Split a complete multiplexed buffer into frames, in order."""
    frames: list[Frame] = []
    offset = 0
    size = len(buffer)

    while offset < size:
        if offset + HEADER_SIZE > size:
            frames.append(Frame(None, bytes(buffer[offset:])))
            break

        stream_type, length = HEADER.unpack_from(buffer, offset)
        remaining = size - offset - HEADER_SIZE
        if stream_type not in _VALID_TYPES or length == 0 or length > remaining:
            frames.append(Frame(None, bytes(buffer[offset:])))
            break

        start = offset + HEADER_SIZE
        frames.append(Frame(StreamType(stream_type), bytes(buffer[start:start + length])))
        offset = start + length

    return frames


def demux_to_text(buffer: bytes) -> str:
    """Clean log text: one stripped line per non-empty frame."""
    if not buffer:
        return ""
    messages = (frame.text.strip() for frame in demux_log_buffer(buffer))
    return "\n".join(m for m in messages if m)


def encode_frame(stream: StreamType, payload: bytes) -> bytes:
    """Build one multiplexed frame (used for fixtures and fake engines)."""
    return HEADER.pack(int(stream), len(payload)) + payload


class FrameDemuxer:
    """
    Incremental demuxer for a followed log stream.

    Chunks arrive with arbitrary boundaries, so a partial frame is held
    until the rest arrives. If the stream turns out not to be multiplexed
    (TTY containers, or a corrupt header) everything from that point on is
    passed through as raw bytes.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._raw = False

    def feed(self, chunk: bytes) -> list[Frame]:
        if self._raw:
            return [Frame(None, bytes(chunk))] if chunk else []

        self._buffer.extend(chunk)
        frames: list[Frame] = []

        while len(self._buffer) >= HEADER_SIZE:
            stream_type, length = HEADER.unpack_from(self._buffer, 0)
            if stream_type not in _VALID_TYPES or length == 0:
                self._raw = True
                frames.append(Frame(None, bytes(self._buffer)))
                self._buffer.clear()
                break
            if len(self._buffer) < HEADER_SIZE + length:
                break
            payload = bytes(self._buffer[HEADER_SIZE:HEADER_SIZE + length])
            frames.append(Frame(StreamType(stream_type), payload))
            del self._buffer[:HEADER_SIZE + length]

        return frames

    def close(self) -> list[Frame]:
        """Flush whatever is left as raw bytes."""
        if not self._buffer:
            return []
        leftover = Frame(None, bytes(self._buffer))
        self._buffer.clear()
        return [leftover]
