# core/streams.py
"""
Composable byte-stream stages.

Every stage has the same shape, `Stage = Callable[[AsyncIterator[bytes]], AsyncIterator[bytes]]`,
so compression, decompression and pass-through are interchangeable at the call sites.
Stages consume and yield one chunk at a time; nothing buffers a whole object.
"""
import zlib
from typing import AsyncIterator, Callable, Dict, Iterable, List

Stage = Callable[[AsyncIterator[bytes]], AsyncIterator[bytes]]

# zlib wbits: 16+MAX_WBITS selects the gzip container, MAX_WBITS the zlib container.
# HTTP's "deflate" content-coding is the zlib container (RFC 9110).
GZIP_WBITS = 16 + zlib.MAX_WBITS
DEFLATE_WBITS = zlib.MAX_WBITS


async def passthrough(source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    async for chunk in source:
        yield chunk


async def _compress(source: AsyncIterator[bytes], wbits: int) -> AsyncIterator[bytes]:
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, wbits)
    async for chunk in source:
        out = compressor.compress(chunk)
        if out:
            yield out
    tail = compressor.flush()
    if tail:
        yield tail


async def _decompress(source: AsyncIterator[bytes], wbits: int) -> AsyncIterator[bytes]:
    decompressor = zlib.decompressobj(wbits)
    async for chunk in source:
        out = decompressor.decompress(chunk)
        if out:
            yield out
    tail = decompressor.flush()
    if tail:
        yield tail
    if not decompressor.eof:
        raise zlib.error("Compressed stream ended before the end-of-stream marker")


def gzip_compress(source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    return _compress(source, GZIP_WBITS)


def gzip_decompress(source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    return _decompress(source, GZIP_WBITS)


def deflate_compress(source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    return _compress(source, DEFLATE_WBITS)


STAGES: Dict[str, Stage] = {
    "passthrough": passthrough,
    "gzip": gzip_compress,
    "gunzip": gzip_decompress,
    "deflate": deflate_compress,
}


def resolve_stages(names: Iterable[str]) -> List[Stage]:
    """Maps stage names (as carried by a DownloadPlan) to stage callables."""
    try:
        return [STAGES[name] for name in names]
    except KeyError as e:
        raise ValueError(f"Unknown stream stage {e}") from None


def apply_stages(source: AsyncIterator[bytes], stages: Iterable[Stage]) -> AsyncIterator[bytes]:
    """Chains stages left to right. An empty list yields the source unchanged."""
    stream = source
    for stage in stages:
        stream = stage(stream)
    return stream


class ByteCounter:
    """Wraps a source and counts the bytes pulled through it."""

    def __init__(self, source: AsyncIterator[bytes]):
        self._source = source
        self.count = 0

    async def __aiter__(self):
        async for chunk in self._source:
            self.count += len(chunk)
            yield chunk


async def iter_bytes(data: bytes, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
    """Async iterator over an in-memory payload, mostly useful for small bodies and tests."""
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]
