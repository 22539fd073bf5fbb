"""
Frame size limits for slave channels.

Limits are enforced on both ends of the wire so a misbehaving peer
cannot make the orchestrator buffer unbounded data.
"""

from compilefarm.errors import MessageSizeError

FRAME_HEADER_SIZE = 5
MAX_FRAME_SIZE = 16 * 1024 * 1024  # 16 MB on the wire
MAX_DECOMPRESSED_SIZE = 128 * 1024 * 1024  # 128 MB after decompression

FLAG_COMPRESSED = 0x01


def validate_frame_size(size: int) -> None:
    if size > MAX_FRAME_SIZE:
        raise MessageSizeError(
            f"Frame too large: {size} bytes > {MAX_FRAME_SIZE} bytes"
        )
