import pytest

from sandbox.logsink import BoundedLogSink, format_log_args


def test_append_until_full_then_drop():
    sink = BoundedLogSink(2)
    assert sink.append("a") is True
    assert sink.append("b") is True
    assert sink.full is True
    assert sink.append("c") is False
    assert sink.entries == ["a", "b"]


def test_entries_are_never_truncated():
    sink = BoundedLogSink(1)
    long_entry = "x" * 10_000
    _ = sink.append(long_entry)
    assert sink.entries == [long_entry]


def test_clear_frees_capacity():
    sink = BoundedLogSink(1)
    _ = sink.append("first")
    sink.clear()
    assert len(sink) == 0
    assert sink.append("second") is True
    assert sink.entries == ["second"]


def test_entries_returns_a_copy():
    sink = BoundedLogSink(3)
    _ = sink.append("a")
    entries = sink.entries
    entries.append("b")
    assert sink.entries == ["a"]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        _ = BoundedLogSink(0)


def test_format_log_args():
    assert format_log_args("hello", "world") == "hello world"
    assert format_log_args(1, [1, 2], {"k": None}) == '1 [1, 2] {"k": null}'
    assert format_log_args("a", "b", sep=",") == "a,b"
    assert format_log_args(object()).startswith("<object object")
    assert format_log_args() == ""
