import pytest

from lrcd.framing import FrameAssembler, LineTooLong


def test_extract_line_waits_for_newline() -> None:
    fa = FrameAssembler()
    fa.feed(b"/jo")
    assert fa.extract_line() is None
    assert len(fa) == 3

    fa.feed(b"in lobby\n")
    assert fa.extract_line() == b"/join lobby"
    assert fa.extract_line() is None
    assert len(fa) == 0


def test_multiple_frames_in_one_read() -> None:
    fa = FrameAssembler()
    fa.feed(b"/nick a\n/join r\nhel")
    assert list(fa.lines()) == [b"/nick a", b"/join r"]

    fa.feed(b"lo\n")
    assert list(fa.lines()) == [b"hello"]


def test_carriage_return_is_left_for_caller() -> None:
    fa = FrameAssembler()
    fa.feed(b"OK\r\n")
    assert fa.extract_line() == b"OK\r"


def test_empty_line() -> None:
    fa = FrameAssembler()
    fa.feed(b"\n\n")
    assert list(fa.lines()) == [b"", b""]


def test_split_multibyte_sequence_is_reassembled() -> None:
    data = "olá\n".encode("utf-8")
    fa = FrameAssembler()
    fa.feed(data[:3])
    assert fa.extract_line() is None
    fa.feed(data[3:])
    assert fa.extract_line().decode("utf-8") == "olá"


def test_unterminated_line_over_limit_raises() -> None:
    fa = FrameAssembler(max_line_bytes=8)
    fa.feed(b"12345678")
    assert fa.extract_line() is None

    fa.feed(b"9")
    with pytest.raises(LineTooLong):
        fa.extract_line()


def test_complete_line_over_limit_raises() -> None:
    fa = FrameAssembler(max_line_bytes=4)
    fa.feed(b"ok\n123456\n")
    assert fa.extract_line() == b"ok"
    with pytest.raises(LineTooLong):
        fa.extract_line()


def test_zero_limit_disables_check() -> None:
    fa = FrameAssembler(max_line_bytes=0)
    fa.feed(b"x" * 100_000)
    assert fa.extract_line() is None
    fa.feed(b"\n")
    assert len(fa.extract_line()) == 100_000
