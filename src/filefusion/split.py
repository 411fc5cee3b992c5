import dataclasses
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Optional

import blake3

from .backends import run_in_asyncio, run_in_trio
from .common import (
    BUFFER_CAPACITY_DEFAULT,
    CHUNK_SIZE_DEFAULT,
    ErrorKind,
    FusionError,
    PathLike,
    as_path,
    chunk_path,
    fail,
)


class SplitErrorKind(ErrorKind):
    IN_FILE_NOT_FOUND = ("in_file_not_found", "The input file not found.")
    IN_FILE_NOT_FILE = ("in_file_not_file", "The input file is not a file.")
    IN_FILE_NOT_SET = ("in_file_not_set", "The input file is not set.")
    IN_FILE_NOT_OPENED = ("in_file_not_opened", "The input file could not be opened.")
    IN_FILE_NOT_READ = ("in_file_not_read", "The input file could not be read.")
    OUT_DIR_NOT_CREATED = ("out_dir_not_created", "The output directory could not be created.")
    OUT_DIR_NOT_DIR = ("out_dir_not_dir", "The output directory is not a directory.")
    OUT_DIR_NOT_SET = ("out_dir_not_set", "The output directory is not set.")
    OUT_FILE_NOT_OPENED = ("out_file_not_opened", "The output file could not be created or opened.")
    OUT_FILE_NOT_WRITTEN = ("out_file_not_written", "The output file could not be written.")
    CHUNK_SIZE_INVALID = ("chunk_size_invalid", "The chunk size must be at least one byte.")
    BUFFER_CAPACITY_INVALID = ("buffer_capacity_invalid", "The buffer capacity must be at least one byte.")


class SplitError(FusionError):
    """Split process failure"""


@dataclass(frozen=True)
class SplitOptions:
    in_file: Optional[pathlib.Path] = None
    out_dir: Optional[pathlib.Path] = None
    chunk_size: int = CHUNK_SIZE_DEFAULT
    buffer_capacity: int = BUFFER_CAPACITY_DEFAULT


@dataclass(frozen=True)
class SplitResult:
    file_size: int
    total_chunks: int
    # BLAKE3 hex digest of the bytes written across all chunks
    checksum: str


class Split:
    """Split a file from a path into numbered chunks inside a directory.

    Chunks are named ``0``, ``1``, ... and every chunk but the last holds
    exactly ``chunk_size`` bytes::

        result = Split().in_file("video.mp4").out_dir("cache").run()
    """

    def __init__(self, options: Optional[SplitOptions] = None):
        self.options = options or SplitOptions()

    def _with(self, **changes) -> "Split":
        return Split(dataclasses.replace(self.options, **changes))

    def in_file(self, path: PathLike) -> "Split":
        return self._with(in_file=as_path(path))

    def out_dir(self, path: PathLike) -> "Split":
        return self._with(out_dir=as_path(path))

    def chunk_size(self, size: int) -> "Split":
        """Set the maximum size of each chunk in bytes"""
        return self._with(chunk_size=size)

    def buffer_capacity(self, capacity: int) -> "Split":
        return self._with(buffer_capacity=capacity)

    def _resolve_in_file(self) -> pathlib.Path:
        in_file = as_path(self.options.in_file)
        if in_file is None:
            raise fail(SplitError(SplitErrorKind.IN_FILE_NOT_SET))
        if not in_file.exists():
            raise fail(SplitError(SplitErrorKind.IN_FILE_NOT_FOUND, in_file))
        if not in_file.is_file():
            raise fail(SplitError(SplitErrorKind.IN_FILE_NOT_FILE, in_file))
        return in_file

    def _resolve_out_dir(self) -> pathlib.Path:
        out_dir = as_path(self.options.out_dir)
        if out_dir is None:
            raise fail(SplitError(SplitErrorKind.OUT_DIR_NOT_SET))
        if not out_dir.exists():
            try:
                out_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise fail(SplitError(SplitErrorKind.OUT_DIR_NOT_CREATED, out_dir), e) from e
        elif not out_dir.is_dir():
            raise fail(SplitError(SplitErrorKind.OUT_DIR_NOT_DIR, out_dir))
        return out_dir

    def run(self) -> SplitResult:
        """Run the split process.

        The input file is checked first, then ``chunk_size`` and
        ``buffer_capacity``, and only then the output directory, so invalid
        sizes never leave a freshly created directory behind.
        """
        in_file = self._resolve_in_file()

        chunk_size = self.options.chunk_size
        buffer_capacity = self.options.buffer_capacity
        if chunk_size < 1:
            raise fail(SplitError(SplitErrorKind.CHUNK_SIZE_INVALID))
        if buffer_capacity < 1:
            raise fail(SplitError(SplitErrorKind.BUFFER_CAPACITY_INVALID))

        out_dir = self._resolve_out_dir()

        try:
            reader = open(in_file, "rb", buffering=buffer_capacity)
        except OSError as e:
            raise fail(SplitError(SplitErrorKind.IN_FILE_NOT_OPENED, in_file), e) from e

        with reader:
            try:
                file_size = os.fstat(reader.fileno()).st_size
            except OSError as e:
                raise fail(SplitError(SplitErrorKind.IN_FILE_NOT_READ, in_file), e) from e

            buffer = bytearray(chunk_size)
            view = memoryview(buffer)
            hasher = blake3.blake3()
            total_chunks = 0

            while True:
                # a single read may return fewer bytes than asked for
                offset = 0
                while offset < chunk_size:
                    try:
                        read = reader.readinto(view[offset:])
                    except OSError as e:
                        raise fail(SplitError(SplitErrorKind.IN_FILE_NOT_READ, in_file), e) from e
                    if not read:
                        break
                    offset += read

                if offset == 0:
                    break

                target = chunk_path(out_dir, total_chunks)
                self._write_chunk(target, view[:offset], buffer_capacity)
                hasher.update(view[:offset])

                logging.debug(f"Wrote chunk {target} ({offset} bytes)")
                total_chunks += 1

        logging.info(f"Split {in_file} ({file_size} bytes) into {total_chunks} chunks")
        return SplitResult(
            file_size=file_size,
            total_chunks=total_chunks,
            checksum=hasher.hexdigest(),
        )

    @staticmethod
    def _write_chunk(target: pathlib.Path, data: memoryview, buffer_capacity: int):
        try:
            writer = open(target, "wb", buffering=buffer_capacity)
        except OSError as e:
            raise fail(SplitError(SplitErrorKind.OUT_FILE_NOT_OPENED, target), e) from e

        try:
            with writer:
                writer.write(data)
                writer.flush()
        except OSError as e:
            raise fail(SplitError(SplitErrorKind.OUT_FILE_NOT_WRITTEN, target), e) from e

    async def run_async(self) -> SplitResult:
        """Run the split process from an asyncio event loop"""
        return await run_in_asyncio(self.run)

    async def run_trio(self) -> SplitResult:
        """Run the split process from a trio event loop"""
        return await run_in_trio(self.run)


def split_file(
    in_file: PathLike,
    out_dir: PathLike,
    chunk_size: int = CHUNK_SIZE_DEFAULT,
    buffer_capacity: int = BUFFER_CAPACITY_DEFAULT,
) -> SplitResult:
    """Split file into chunks and return the split totals"""
    options = SplitOptions(
        in_file=as_path(in_file),
        out_dir=as_path(out_dir),
        chunk_size=chunk_size,
        buffer_capacity=buffer_capacity,
    )
    return Split(options).run()
