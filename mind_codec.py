"""
Mind Codec - Versioned, compressed binary snapshots of a ``MindState``.

Blob layout (outermost first):

    zstd frame (content size in header, content checksum)
      └─ msgpack map
           version: int (== SCHEMA_VERSION)
           tick:    int
           activation_thresholds, outputs_weights, input_weights,
           reactivation_delays, next_activations, signal_map:
               bin - numpy ``.npy`` bytes (dtype, shape, row-major data)

``neural_activity`` is never written; decode always rebuilds it as zeros.

Usage::

    from mind_codec import encode, decode, save_checkpoint, load_checkpoint
    blob = encode(state, compression_level=3)
    restored = decode(blob)

    save_checkpoint(state, "/path/to/main.mind.zst")
    state = load_checkpoint("/path/to/main.mind.zst")
"""

from __future__ import annotations

import io
import logging
import math
import os
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import msgpack
import numpy as np
import numpy.lib.format as npy_format
import zstandard as zstd

from mind_foundation import (
    MAX_TICK,
    MATRIX_FIELDS,
    VECTOR_FIELDS,
    MindError,
    MindState,
    validate_state,
)

logger = logging.getLogger("neuromind.codec")

SCHEMA_VERSION = 1

DEFAULT_COMPRESSION_LEVEL = 3

# Decompression-bomb ceiling, checked against the frame header before
# any output buffer is allocated.
MAX_DECOMPRESSED_SIZE = 100 * 1024 ** 3

MIN_COMPRESSION_LEVEL = -(1 << 17)

TENSOR_FIELDS = (
    "activation_thresholds",
    "outputs_weights",
    "input_weights",
    "reactivation_delays",
    "next_activations",
    "signal_map",
)

_TENSOR_NDIM = {
    **{name: 1 for name in VECTOR_FIELDS},
    **{name: 2 for name in MATRIX_FIELDS},
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class CodecError(MindError):
    """Base class for encode/decode failures."""


class CompressionError(CodecError):
    """The compressor rejected the input or its parameters."""


class DecompressionError(CodecError):
    """The frame header is malformed or the stream is corrupt/truncated."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Decompression failed: {reason}")


class SizeLimitExceeded(CodecError):
    """The frame declares a decompressed size above the ceiling."""

    def __init__(self, declared: int, ceiling: int = MAX_DECOMPRESSED_SIZE):
        self.declared = declared
        self.ceiling = ceiling
        super().__init__(
            f"Declared decompressed size {declared:,} bytes exceeds the "
            f"{ceiling:,} byte limit"
        )


class FormatError(CodecError):
    """The decompressed bytes are not a well-formed snapshot document."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed snapshot: {reason}")


class SchemaVersionError(CodecError):
    """The snapshot was written with an unsupported schema version."""

    def __init__(self, found: Any, expected: int = SCHEMA_VERSION):
        self.found = found
        self.expected = expected
        super().__init__(f"Unsupported schema version {found!r}, expected {expected}")


# ---------------------------------------------------------------------------
# Tensor blobs
# ---------------------------------------------------------------------------

def _encode_tensor(array: np.ndarray) -> bytes:
    buf = io.BytesIO()
    np.save(buf, np.ascontiguousarray(array), allow_pickle=False)
    return buf.getvalue()


def _read_tensor_header(name: str, blob: Any) -> Tuple[Tuple[int, ...], bool, np.dtype, int]:
    """Parse the ``.npy`` header of a tensor field without touching its data.

    Returns:
        (shape, fortran_order, dtype, data_offset)
    """
    if not isinstance(blob, (bytes, bytearray)):
        raise FormatError(f"{name} is {type(blob).__name__}, expected binary")

    fp = io.BytesIO(blob)
    try:
        version = npy_format.read_magic(fp)
        if version == (1, 0):
            shape, fortran_order, dtype = npy_format.read_array_header_1_0(fp)
        elif version == (2, 0):
            shape, fortran_order, dtype = npy_format.read_array_header_2_0(fp)
        else:
            version = None
    except (ValueError, TypeError, EOFError) as exc:
        raise FormatError(f"{name} is not a valid array: {exc}") from exc
    if version is None:
        raise FormatError(f"{name} uses an unsupported .npy format version")

    if any(dim < 0 for dim in shape):
        raise FormatError(f"{name} has negative dimension in shape {shape}")
    if len(shape) != _TENSOR_NDIM[name]:
        raise FormatError(
            f"{name} has {len(shape)} dimensions, expected {_TENSOR_NDIM[name]}"
        )
    if not np.issubdtype(dtype, np.floating):
        raise FormatError(f"{name} has dtype {dtype}, expected floating point")
    return shape, fortran_order, dtype, fp.tell()


def _decode_tensor(name: str, blob: Any) -> np.ndarray:
    shape, fortran_order, dtype, offset = _read_tensor_header(name, blob)

    # The header's shape must match the bytes actually present before
    # anything is allocated from it.
    count = math.prod(shape)
    if count * dtype.itemsize != len(blob) - offset:
        raise FormatError(
            f"{name} header declares {count * dtype.itemsize} data bytes, "
            f"found {len(blob) - offset}"
        )
    if count == 0:
        return np.empty(shape, dtype=dtype)

    data = np.frombuffer(blob, dtype=dtype, count=count, offset=offset)
    data = data.reshape(shape, order="F" if fortran_order else "C")
    # frombuffer views the msgpack buffer; own the values outright.
    return np.array(data, order="C", copy=True)


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------

def _build_document(state: MindState) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "version": SCHEMA_VERSION,
        "tick": int(state.tick),
    }
    for name in TENSOR_FIELDS:
        doc[name] = _encode_tensor(getattr(state, name))
    return doc


def encode(state: MindState, compression_level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    """Serialize and compress ``state``.

    Args:
        state: State to snapshot; ``neural_activity`` is not stored.
        compression_level: Zstandard level.

    Returns:
        Compressed snapshot bytes.

    Raises:
        StructuralInvariantViolation: If ``state`` fails validation.
        CompressionError: If the level is out of range or compression fails.
    """
    validate_state(state)

    if not MIN_COMPRESSION_LEVEL <= compression_level <= zstd.MAX_COMPRESSION_LEVEL:
        raise CompressionError(
            f"Compression level {compression_level} outside "
            f"[{MIN_COMPRESSION_LEVEL}, {zstd.MAX_COMPRESSION_LEVEL}]"
        )

    payload = msgpack.packb(_build_document(state), use_bin_type=True)

    try:
        compressor = zstd.ZstdCompressor(
            level=compression_level,
            write_content_size=True,
            write_checksum=True,
        )
        blob = compressor.compress(payload)
    except zstd.ZstdError as exc:
        raise CompressionError(f"zstd compression failed: {exc}") from exc

    logger.debug(
        "Encoded %d neurons at tick %d: %d -> %d bytes",
        state.neurons, state.tick, len(payload), len(blob),
    )
    return blob


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def declared_size(blob: bytes) -> int:
    """Return the decompressed size declared by the frame header.

    Raises:
        DecompressionError: If the header is malformed or omits the size.
        SizeLimitExceeded: If the size is above ``MAX_DECOMPRESSED_SIZE``.
    """
    try:
        size = zstd.frame_content_size(blob)
    except zstd.ZstdError as exc:
        raise DecompressionError(f"bad frame header: {exc}") from exc

    if size < 0:
        raise DecompressionError("frame header does not declare a content size")
    if size > MAX_DECOMPRESSED_SIZE:
        raise SizeLimitExceeded(size, MAX_DECOMPRESSED_SIZE)
    return size


def _decompress(blob: bytes) -> bytes:
    size = declared_size(blob)
    try:
        payload = zstd.ZstdDecompressor().decompress(blob, max_output_size=size)
    except zstd.ZstdError as exc:
        raise DecompressionError(str(exc)) from exc
    if len(payload) != size:
        raise DecompressionError(
            f"frame produced {len(payload)} bytes, header declared {size}"
        )
    return payload


def _parse_document(payload: bytes) -> Dict[str, Any]:
    try:
        doc = msgpack.unpackb(payload, raw=False)
    except (ValueError, msgpack.exceptions.UnpackException) as exc:
        raise FormatError(f"invalid msgpack document: {exc}") from exc
    if not isinstance(doc, dict):
        raise FormatError(f"document is {type(doc).__name__}, expected a map")
    return doc


def _check_version(doc: Dict[str, Any]) -> None:
    version = doc.get("version")
    if type(version) is not int or version != SCHEMA_VERSION:
        raise SchemaVersionError(version, SCHEMA_VERSION)


def _read_tick(doc: Dict[str, Any]) -> int:
    if "tick" not in doc:
        raise FormatError("missing field 'tick'")
    tick = doc["tick"]
    if type(tick) is not int:
        raise FormatError(f"tick is {type(tick).__name__}, expected int")
    if not 0 <= tick < MAX_TICK:
        raise FormatError(f"tick {tick} outside [0, {MAX_TICK})")
    return tick


def decode(blob: bytes) -> MindState:
    """Rebuild a validated ``MindState`` from ``encode`` output.

    ``neural_activity`` comes back as zeros sized like ``signal_map``.

    Raises:
        DecompressionError: Malformed header, unknown size, corrupt stream.
        SizeLimitExceeded: Declared size above ``MAX_DECOMPRESSED_SIZE``.
        FormatError: Decompressed bytes are not a snapshot document.
        SchemaVersionError: ``version`` is not ``SCHEMA_VERSION``.
        StructuralInvariantViolation: Tensor shapes are inconsistent.
    """
    doc = _parse_document(_decompress(bytes(blob)))
    _check_version(doc)
    tick = _read_tick(doc)

    tensors: Dict[str, np.ndarray] = {}
    for name in TENSOR_FIELDS:
        if name not in doc:
            raise FormatError(f"missing field {name!r}")
        tensors[name] = _decode_tensor(name, doc[name])

    signal_map = tensors["signal_map"]
    state = MindState(
        tick=tick,
        neural_activity=np.zeros(len(signal_map), dtype=signal_map.dtype),
        **tensors,
    )
    validate_state(state)

    logger.debug("Decoded %d neurons at tick %d", state.neurons, tick)
    return state


def describe(blob: bytes) -> Dict[str, Any]:
    """Summarize a snapshot from its document and ``signal_map`` header.

    Tensor data is never materialized and no ``MindState`` is built, so
    cross-field shape consistency is left to ``decode``.

    Returns:
        Dict with version, tick, neurons, dtype and compressed/decompressed
        sizes.
    """
    size = declared_size(blob)
    doc = _parse_document(_decompress(bytes(blob)))
    _check_version(doc)
    tick = _read_tick(doc)
    if "signal_map" not in doc:
        raise FormatError("missing field 'signal_map'")
    shape, _, dtype, _ = _read_tensor_header("signal_map", doc["signal_map"])
    return {
        "version": SCHEMA_VERSION,
        "tick": tick,
        "neurons": shape[0],
        "dtype": str(dtype),
        "compressed_bytes": len(blob),
        "decompressed_bytes": size,
    }


# ---------------------------------------------------------------------------
# Checkpoint files
# ---------------------------------------------------------------------------

PathLike = Union[str, Path]


def create_backup(path: PathLike, suffix: Optional[str] = None) -> str:
    """Copy an existing checkpoint to ``<path><suffix>`` (timestamped by default)."""
    if suffix is None:
        suffix = f".backup-{int(time.time())}"
    backup_path = str(path) + suffix
    shutil.copy2(path, backup_path)
    return backup_path


def save_checkpoint(
    state: MindState,
    path: PathLike,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    backup: bool = False,
) -> Path:
    """Encode ``state`` and write it atomically to ``path``.

    The blob is written to a temp file beside ``path`` and moved into place,
    so readers never observe a partial checkpoint.

    Args:
        backup: Copy the previous checkpoint aside before replacing it.

    Returns:
        The checkpoint path.
    """
    blob = encode(state, compression_level)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    if backup and target.exists():
        backup_path = create_backup(target)
        logger.info("Backed up previous checkpoint to %s", backup_path)

    tmp_path = target.with_name(target.name + ".tmp")
    with open(tmp_path, "wb") as f:
        f.write(blob)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, target)

    logger.info(
        "Checkpoint saved: %d neurons, tick %d, %d bytes to %s",
        state.neurons, state.tick, len(blob), target,
    )
    return target


def load_checkpoint(path: PathLike) -> MindState:
    """Read and decode a checkpoint file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")
    state = decode(p.read_bytes())
    logger.info("Checkpoint loaded: %d neurons, tick %d from %s", state.neurons, state.tick, p)
    return state


def get_checkpoint_info(path: PathLike) -> Dict[str, Any]:
    """Get detailed information about a checkpoint file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")
    info = describe(p.read_bytes())
    info["path"] = str(p)
    info["modified"] = p.stat().st_mtime
    return info
