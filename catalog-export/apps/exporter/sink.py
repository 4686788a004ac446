"""
Streaming Sink - Incremental JSON Array Writer

Writes records to a single top-level JSON array as they arrive, so a run
never holds the full result set in memory.

Features:
- Opening bracket written up front, closing bracket on finalize
- Optional UTF-8 byte order marker
- Concurrent write calls are serialized; each batch stays contiguous
- File I/O runs in a worker thread so request bookkeeping keeps going
- An empty output file is deleted on finalize (saved=False)
- Any I/O failure raises SinkIOError and poisons the sink for the rest of the run

Usage:
    async with JsonArraySink(path, include_bom=True) as sink:
        await sink.write_many(records)
        result = await sink.finalize()
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Optional

import orjson

from utils.errors import SinkIOError
from utils.schemas import SinkResult

BOM = b"\xef\xbb\xbf"

ARRAY_OPEN = b"["
ARRAY_SEPARATOR = b"\n,\n"
ARRAY_CLOSE = b"\n]\n"


class JsonArraySink:
    """Write-ahead JSON array serializer over one output file."""

    def __init__(
        self,
        path: str | Path,
        include_bom: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.path = Path(path)
        self.include_bom = include_bom
        self.logger = logger or logging.getLogger(__name__)

        self._file: Optional[BinaryIO] = None
        self._lock = asyncio.Lock()
        self._records_written = 0
        self._failure: Optional[SinkIOError] = None
        self._finalized = False

    @property
    def records_written(self) -> int:
        return self._records_written

    def _fail(self, action: str, error: OSError) -> SinkIOError:
        self._failure = SinkIOError(f"Failed to {action} {self.path}: {error}")
        self.logger.error("Output stream error: %s", self._failure)
        return self._failure

    def _check_usable(self) -> BinaryIO:
        if self._failure is not None:
            raise self._failure
        if self._file is None or self._finalized:
            raise SinkIOError(f"Output file {self.path} is not open")
        return self._file

    async def open(self) -> "JsonArraySink":
        def _open() -> BinaryIO:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.path, "wb")
            if self.include_bom:
                handle.write(BOM)
            handle.write(ARRAY_OPEN)
            return handle

        try:
            self._file = await asyncio.to_thread(_open)
        except OSError as e:
            raise self._fail("open", e) from e
        return self

    def _encode(self, records: Iterable[Any]) -> tuple[bytes, int]:
        chunks: list[bytes] = []
        count = 0
        for record in records:
            separator = b"\n" if self._records_written + count == 0 else ARRAY_SEPARATOR
            chunks.append(separator)
            chunks.append(orjson.dumps(record))
            count += 1
        return b"".join(chunks), count

    async def write_many(self, records: Iterable[Any]) -> int:
        """Append records in order as one contiguous batch.

        Returns:
            Number of records appended

        Raises:
            SinkIOError: If the file cannot be written
        """
        async with self._lock:
            handle = self._check_usable()
            payload, count = self._encode(records)
            if not count:
                return 0
            try:
                await asyncio.to_thread(handle.write, payload)
            except OSError as e:
                raise self._fail("write to", e) from e
            self._records_written += count
            return count

    async def write(self, record: Any) -> None:
        await self.write_many([record])

    async def finalize(self) -> SinkResult:
        """Close the array and the file; drop the file when nothing was written.

        Raises:
            SinkIOError: If closing or removing the file fails
        """
        async with self._lock:
            handle = self._check_usable()
            self._finalized = True

            def _close() -> None:
                try:
                    handle.write(ARRAY_CLOSE)
                    handle.flush()
                finally:
                    handle.close()

            try:
                await asyncio.to_thread(_close)
            except OSError as e:
                raise self._fail("close", e) from e
            finally:
                self._file = None

            if self._records_written == 0:
                self.logger.info("No records downloaded")
                try:
                    await asyncio.to_thread(self.path.unlink, missing_ok=True)
                except OSError as e:
                    raise self._fail("remove empty", e) from e
                return SinkResult(saved=False, path=str(self.path), records_written=0)

            self.logger.info("Records Saved. Path: %s", self.path)
            return SinkResult(saved=True, path=str(self.path), records_written=self._records_written)

    async def close(self) -> None:
        """Release the file handle without finalizing (used on error paths)."""
        if self._file is not None:
            handle, self._file = self._file, None
            await asyncio.to_thread(handle.close)

    async def __aenter__(self) -> "JsonArraySink":
        return await self.open()

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()
