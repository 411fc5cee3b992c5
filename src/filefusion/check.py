import dataclasses
import logging
import os
import pathlib
import stat
from dataclasses import dataclass
from typing import List, Optional, Union

import blake3

from .backends import run_in_asyncio, run_in_trio
from .common import (
    BUFFER_CAPACITY_DEFAULT,
    ErrorKind,
    FusionError,
    PathLike,
    as_path,
    chunk_path,
    fail,
)


class CheckErrorKind(ErrorKind):
    IN_DIR_NOT_FOUND = ("in_dir_not_found", "The input directory not found.")
    IN_DIR_NOT_DIR = ("in_dir_not_dir", "The input directory is not a directory.")
    IN_DIR_NOT_SET = ("in_dir_not_set", "The input directory is not set.")
    IN_FILE_NOT_OPENED = ("in_file_not_opened", "The input file could not be opened.")
    IN_FILE_NOT_READ = ("in_file_not_read", "The input file could not be read.")
    FILE_SIZE_NOT_SET = ("file_size_not_set", "The `file_size` is not set.")
    TOTAL_CHUNKS_NOT_SET = ("total_chunks_not_set", "The `total_chunks` is not set.")
    FILE_SIZE_INVALID = ("file_size_invalid", "The `file_size` must be a non-negative integer.")
    TOTAL_CHUNKS_INVALID = ("total_chunks_invalid", "The `total_chunks` must be a non-negative integer.")
    MISSING_CHUNKS = ("missing_chunks", "Some of the chunks are missing to merge the file.")
    SIZE_MISMATCH = ("size_mismatch", "The actual file size is not equal the input file size.")
    CHECKSUM_MISMATCH = ("checksum_mismatch", "The chunks checksum is not equal the input checksum.")


@dataclass(frozen=True)
class MissingChunks:
    missing: List[int]

    kind = CheckErrorKind.MISSING_CHUNKS


@dataclass(frozen=True)
class SizeMismatch:
    expected: int
    actual: int

    kind = CheckErrorKind.SIZE_MISMATCH


@dataclass(frozen=True)
class ChecksumMismatch:
    expected: str
    actual: str

    kind = CheckErrorKind.CHECKSUM_MISMATCH


Outcome = Union[MissingChunks, SizeMismatch, ChecksumMismatch]


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class CheckError(FusionError):
    """Check process failure.

    When the scan itself ran but found the chunk set invalid, ``outcome``
    holds the details (``MissingChunks``, ``SizeMismatch`` or
    ``ChecksumMismatch``); for configuration or I/O failures it is None.
    """

    def __init__(
        self,
        kind: CheckErrorKind,
        path: Optional[pathlib.Path] = None,
        outcome: Optional[Outcome] = None,
    ):
        self.outcome = outcome
        super().__init__(kind, path)

    @classmethod
    def from_outcome(cls, outcome: Outcome, path: Optional[pathlib.Path] = None) -> "CheckError":
        return cls(outcome.kind, path, outcome=outcome)

    @property
    def is_verification_failure(self) -> bool:
        return self.outcome is not None


@dataclass(frozen=True)
class CheckResult:
    success: bool
    outcome: Optional[Outcome] = None

    @property
    def missing(self) -> Optional[List[int]]:
        if isinstance(self.outcome, MissingChunks):
            return self.outcome.missing
        return None


@dataclass(frozen=True)
class CheckOptions:
    in_dir: Optional[pathlib.Path] = None
    file_size: Optional[int] = None
    total_chunks: Optional[int] = None
    checksum: Optional[str] = None


class Check:
    """Check that a directory holds a complete, correctly sized chunk set.

    ``run()`` raises ``CheckError`` for every failure, including a chunk set
    found to be invalid. ``verify()`` only raises when the check could not
    run and otherwise returns a ``CheckResult``::

        result = Check().in_dir("cache").file_size(size).total_chunks(n).verify()
        if not result.success:
            print(result.outcome)
    """

    def __init__(self, options: Optional[CheckOptions] = None):
        self.options = options or CheckOptions()

    def _with(self, **changes) -> "Check":
        return Check(dataclasses.replace(self.options, **changes))

    def in_dir(self, path: PathLike) -> "Check":
        return self._with(in_dir=as_path(path))

    def file_size(self, size: int) -> "Check":
        """Set the size of the original file in bytes"""
        return self._with(file_size=size)

    def total_chunks(self, chunks: int) -> "Check":
        """Set the total number of chunks split from the original file"""
        return self._with(total_chunks=chunks)

    def checksum(self, digest: str) -> "Check":
        """Set the expected BLAKE3 hex digest of the original file"""
        return self._with(checksum=digest)

    def _scan(self) -> Optional[Outcome]:
        in_dir = as_path(self.options.in_dir)
        if in_dir is None:
            raise fail(CheckError(CheckErrorKind.IN_DIR_NOT_SET))
        if not in_dir.exists():
            raise fail(CheckError(CheckErrorKind.IN_DIR_NOT_FOUND, in_dir))
        if not in_dir.is_dir():
            raise fail(CheckError(CheckErrorKind.IN_DIR_NOT_DIR, in_dir))

        file_size = self.options.file_size
        if file_size is None:
            raise fail(CheckError(CheckErrorKind.FILE_SIZE_NOT_SET))
        total_chunks = self.options.total_chunks
        if total_chunks is None:
            raise fail(CheckError(CheckErrorKind.TOTAL_CHUNKS_NOT_SET))
        if not _is_count(file_size):
            raise fail(CheckError(CheckErrorKind.FILE_SIZE_INVALID))
        if not _is_count(total_chunks):
            raise fail(CheckError(CheckErrorKind.TOTAL_CHUNKS_INVALID))

        actual_size = 0
        missing = []

        for i in range(total_chunks):
            target = chunk_path(in_dir, i)
            try:
                chunk = open(target, "rb")
            except OSError:
                missing.append(i)
                continue

            with chunk:
                try:
                    metadata = os.fstat(chunk.fileno())
                except OSError as e:
                    raise fail(CheckError(CheckErrorKind.IN_FILE_NOT_READ, target), e) from e

            if not stat.S_ISREG(metadata.st_mode):
                missing.append(i)
                continue

            actual_size += metadata.st_size

        if missing:
            return MissingChunks(missing=missing)

        if actual_size != file_size:
            return SizeMismatch(expected=file_size, actual=actual_size)

        if self.options.checksum is not None:
            actual = self._digest(in_dir, total_chunks)
            if actual != self.options.checksum.lower():
                return ChecksumMismatch(expected=self.options.checksum, actual=actual)

        return None

    @staticmethod
    def _digest(in_dir: pathlib.Path, total_chunks: int) -> str:
        hasher = blake3.blake3()
        buffer = bytearray(BUFFER_CAPACITY_DEFAULT)
        view = memoryview(buffer)

        for i in range(total_chunks):
            target = chunk_path(in_dir, i)
            try:
                chunk = open(target, "rb")
            except OSError as e:
                raise fail(CheckError(CheckErrorKind.IN_FILE_NOT_OPENED, target), e) from e

            with chunk:
                while True:
                    try:
                        read = chunk.readinto(view)
                    except OSError as e:
                        raise fail(CheckError(CheckErrorKind.IN_FILE_NOT_READ, target), e) from e
                    if not read:
                        break
                    hasher.update(view[:read])

        return hasher.hexdigest()

    def verify(self) -> CheckResult:
        """Run the check and report an invalid chunk set as a negative result"""
        outcome = self._scan()
        if outcome is None:
            logging.info(f"Chunks in {self.options.in_dir} passed the check")
            return CheckResult(success=True)

        logging.warning(f"Chunks in {self.options.in_dir} failed the check: {outcome}")
        return CheckResult(success=False, outcome=outcome)

    def run(self) -> bool:
        """Run the check and raise CheckError for an invalid chunk set"""
        result = self.verify()
        if not result.success:
            raise CheckError.from_outcome(result.outcome, as_path(self.options.in_dir))
        return True

    async def run_async(self) -> bool:
        return await run_in_asyncio(self.run)

    async def run_trio(self) -> bool:
        return await run_in_trio(self.run)

    async def verify_async(self) -> CheckResult:
        return await run_in_asyncio(self.verify)

    async def verify_trio(self) -> CheckResult:
        return await run_in_trio(self.verify)


def check_chunks(
    in_dir: PathLike,
    file_size: int,
    total_chunks: int,
    checksum: Optional[str] = None,
) -> CheckResult:
    """Check a chunk directory and return the result without raising on bad data"""
    options = CheckOptions(
        in_dir=as_path(in_dir),
        file_size=file_size,
        total_chunks=total_chunks,
        checksum=checksum,
    )
    return Check(options).verify()
