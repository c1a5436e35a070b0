"""
png_codec.py - Minimal PNG encoder for raw RGBA samples.

Builds a single-frame, 8-bit RGBA PNG: signature, IHDR, one zlib-deflated
IDAT (each scanline prefixed with filter type 0), IEND. Every chunk is
length-prefixed, type-tagged and carries a CRC-32 over type + data.
"""
import base64
import logging
import struct
import zlib

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

_BIT_DEPTH = 8
_COLOR_TYPE_RGBA = 6
_FILTER_NONE = 0


def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    """Frame one chunk: length, type, data, CRC-32(type + data)."""
    if len(chunk_type) != 4:
        raise ValueError(f"PNG chunk type must be 4 bytes, got {chunk_type!r}")
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def encode_png(width: int, height: int, rgba: bytes) -> bytes:
    """Encode interleaved 8-bit RGBA samples as a PNG file."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")
    stride = width * 4
    if len(rgba) != stride * height:
        raise ValueError(
            f"Expected {stride * height} RGBA bytes for {width}x{height}, got {len(rgba)}"
        )

    ihdr = struct.pack(
        ">IIBBBBB", width, height, _BIT_DEPTH, _COLOR_TYPE_RGBA,
        0,  # compression: deflate
        0,  # filter method
        0,  # no interlace
    )

    raw = bytearray()
    view = memoryview(rgba)
    for y in range(height):
        raw.append(_FILTER_NONE)
        raw += view[y * stride:(y + 1) * stride]

    return b"".join([
        PNG_SIGNATURE,
        png_chunk(b"IHDR", ihdr),
        png_chunk(b"IDAT", zlib.compress(bytes(raw))),
        png_chunk(b"IEND", b""),
    ])


def rgba_data_url(width: int, height: int, rgba: bytes) -> tuple:
    """Return (format, data URL) for raw RGBA samples.

    Falls back to an untyped ``image/raw`` URL that records the dimensions
    when PNG encoding fails, so one bad image never blocks the others.
    """
    try:
        png = encode_png(width, height, rgba)
        return "png", "data:image/png;base64," + base64.b64encode(png).decode("ascii")
    except Exception as e:
        logger.warning("PNG encoding failed for %dx%d samples: %s", width, height, e)
        payload = base64.b64encode(bytes(rgba)).decode("ascii")
        return "raw", f"data:image/raw;width={width};height={height};base64,{payload}"
