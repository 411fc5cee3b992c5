import os
import pytest
from filefusion.split import Split
from filefusion.check import (
    Check,
    CheckError,
    CheckErrorKind,
    CheckResult,
    ChecksumMismatch,
    MissingChunks,
    SizeMismatch,
    check_chunks,
)


@pytest.fixture
def chunks(tmp_path):
    """Split a 10_000 byte file into 1024 byte chunks (10 chunks)"""
    source = tmp_path / "source.bin"
    source.write_bytes(os.urandom(10_000))
    out_dir = tmp_path / "chunks"
    result = Split().in_file(source).out_dir(out_dir).chunk_size(1024).run()
    return out_dir, result


def _check(out_dir, result):
    return Check().in_dir(out_dir).file_size(result.file_size).total_chunks(result.total_chunks)


def test_successful_check(chunks):
    out_dir, result = chunks
    assert result.total_chunks == 10
    assert _check(out_dir, result).run() is True
    assert _check(out_dir, result).verify() == CheckResult(success=True)


def test_successful_check_with_checksum(chunks):
    out_dir, result = chunks
    assert _check(out_dir, result).checksum(result.checksum).run()


def test_zero_chunks(tmp_path):
    assert Check().in_dir(tmp_path).file_size(0).total_chunks(0).run()


@pytest.mark.parametrize("k", [0, 4, 9])
def test_missing_chunk_detected(chunks, k):
    out_dir, result = chunks
    (out_dir / str(k)).unlink()

    with pytest.raises(CheckError) as info:
        _check(out_dir, result).run()

    assert info.value.kind is CheckErrorKind.MISSING_CHUNKS
    assert info.value.outcome == MissingChunks(missing=[k])
    assert info.value.is_verification_failure


def test_all_missing_chunks_reported_in_order(chunks):
    out_dir, result = chunks
    for k in (7, 2, 5):
        (out_dir / str(k)).unlink()

    check_result = _check(out_dir, result).verify()

    assert not check_result.success
    assert check_result.missing == [2, 5, 7]


def test_more_chunks_expected_than_present(chunks):
    out_dir, result = chunks
    outcome = Check().in_dir(out_dir).file_size(result.file_size).total_chunks(12).verify().outcome
    assert outcome == MissingChunks(missing=[10, 11])


def test_directory_in_place_of_chunk_is_missing(chunks):
    out_dir, result = chunks
    (out_dir / "3").unlink()
    (out_dir / "3").mkdir()

    outcome = _check(out_dir, result).verify().outcome
    assert outcome == MissingChunks(missing=[3])


def test_missing_takes_precedence_over_size(chunks):
    out_dir, result = chunks
    (out_dir / "0").unlink()

    # the size is wrong as well, but the missing chunk is what gets reported
    outcome = Check().in_dir(out_dir).file_size(result.file_size + 5).total_chunks(result.total_chunks).verify().outcome
    assert isinstance(outcome, MissingChunks)
    assert outcome.missing == [0]


@pytest.mark.parametrize("delta", [1, -1, 1024, -9_000])
def test_size_mismatch(chunks, delta):
    out_dir, result = chunks

    with pytest.raises(CheckError) as info:
        Check().in_dir(out_dir).file_size(result.file_size + delta).total_chunks(result.total_chunks).run()

    assert info.value.kind is CheckErrorKind.SIZE_MISMATCH
    assert info.value.code == "size_mismatch"
    assert info.value.outcome == SizeMismatch(expected=result.file_size + delta, actual=result.file_size)


def test_truncated_chunk_is_size_mismatch(chunks):
    out_dir, result = chunks
    (out_dir / "9").write_bytes(b"short")

    outcome = _check(out_dir, result).verify().outcome
    assert outcome == SizeMismatch(expected=10_000, actual=9 * 1024 + 5)


def test_checksum_mismatch(chunks):
    out_dir, result = chunks
    data = bytearray((out_dir / "2").read_bytes())
    data[0] ^= 0xFF
    (out_dir / "2").write_bytes(bytes(data))

    # same size, different content
    assert _check(out_dir, result).run()
    check_result = _check(out_dir, result).checksum(result.checksum).verify()

    assert not check_result.success
    assert isinstance(check_result.outcome, ChecksumMismatch)
    assert check_result.outcome.expected == result.checksum
    assert check_result.outcome.actual != result.checksum


def test_size_mismatch_precedes_checksum(chunks):
    out_dir, result = chunks
    outcome = Check().in_dir(out_dir).file_size(1).total_chunks(result.total_chunks).checksum("00").verify().outcome
    assert isinstance(outcome, SizeMismatch)


def test_both_conventions_classify_alike(chunks):
    out_dir, result = chunks
    (out_dir / "1").unlink()
    process = _check(out_dir, result)

    with pytest.raises(CheckError) as info:
        process.run()

    assert process.verify().outcome == info.value.outcome


@pytest.mark.parametrize("build, kind", [
    (lambda d: Check().file_size(1).total_chunks(1), CheckErrorKind.IN_DIR_NOT_SET),
    (lambda d: Check().in_dir(d / "nope").file_size(1).total_chunks(1), CheckErrorKind.IN_DIR_NOT_FOUND),
    (lambda d: Check().in_dir(d / "source.bin").file_size(1).total_chunks(1), CheckErrorKind.IN_DIR_NOT_DIR),
    (lambda d: Check().in_dir(d / "chunks").total_chunks(1), CheckErrorKind.FILE_SIZE_NOT_SET),
    (lambda d: Check().in_dir(d / "chunks").file_size(1), CheckErrorKind.TOTAL_CHUNKS_NOT_SET),
])
def test_operation_failures_raise_in_both_conventions(chunks, tmp_path, build, kind):
    process = build(tmp_path)

    with pytest.raises(CheckError) as info:
        process.verify()
    assert info.value.kind is kind
    assert info.value.outcome is None
    assert not info.value.is_verification_failure

    with pytest.raises(CheckError) as info:
        process.run()
    assert info.value.kind is kind


def test_check_chunks_helper(chunks):
    out_dir, result = chunks
    assert check_chunks(out_dir, result.file_size, result.total_chunks, result.checksum).success
    assert not check_chunks(out_dir, result.file_size, result.total_chunks + 1).success


@pytest.mark.parametrize("file_size, total_chunks, kind", [
    (-1, 10, CheckErrorKind.FILE_SIZE_INVALID),
    (10_000.0, 10, CheckErrorKind.FILE_SIZE_INVALID),
    (True, 10, CheckErrorKind.FILE_SIZE_INVALID),
    (10_000, -3, CheckErrorKind.TOTAL_CHUNKS_INVALID),
    (10_000, "10", CheckErrorKind.TOTAL_CHUNKS_INVALID),
])
def test_invalid_counts_are_configuration_errors(chunks, file_size, total_chunks, kind):
    out_dir, _ = chunks
    process = Check().in_dir(out_dir).file_size(file_size).total_chunks(total_chunks)

    with pytest.raises(CheckError) as info:
        process.verify()
    assert info.value.kind is kind
    assert not info.value.is_verification_failure

    with pytest.raises(CheckError) as info:
        process.run()
    assert info.value.kind is kind


def test_negative_total_chunks_does_not_pass(tmp_path):
    with pytest.raises(CheckError) as info:
        Check().in_dir(tmp_path).file_size(0).total_chunks(-3).run()
    assert info.value.code == "total_chunks_invalid"


def test_verification_error_names_directory(chunks):
    out_dir, result = chunks
    (out_dir / "4").unlink()

    with pytest.raises(CheckError) as info:
        _check(out_dir, result).run()

    assert info.value.path == out_dir
    assert str(out_dir) in str(info.value)
