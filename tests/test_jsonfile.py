import io
import json
import os
from datetime import datetime, timezone

import pytest

from nerdkit.jsonfile import Entry, decode, encode, log_path


def test_log_path_layout():
    assert log_path("/data", "default", "abc") == os.path.join(
        "/data", "containers", "default", "abc", "abc-json.log"
    )


def test_entry_time_format_matches_docker_style():
    entry = Entry(
        log="hi\n",
        stream="stdout",
        time=datetime(2020, 12, 11, 20, 29, 41, 939902, tzinfo=timezone.utc),
    )
    data = json.loads(entry.to_json())
    assert data == {"log": "hi\n", "stream": "stdout", "time": "2020-12-11T20:29:41.939902Z"}


def test_entry_omits_empty_fields():
    data = json.loads(Entry(time=datetime(2021, 1, 2, tzinfo=timezone.utc)).to_json())
    assert set(data) == {"time"}


def test_entry_escapes_html_characters():
    text = Entry(log="<a>&", stream="stdout").to_json()
    assert "<" not in text and ">" not in text and "&" not in text
    assert json.loads(text)["log"] == "<a>&"


def test_entry_from_dict_parses_nanoseconds():
    entry = Entry.from_dict(
        {"log": "x\n", "stream": "stderr", "time": "2020-12-11T20:29:41.939902251Z"}
    )
    assert entry.time == datetime(2020, 12, 11, 20, 29, 41, 939902, tzinfo=timezone.utc)
    assert entry.stream == "stderr"


def test_entry_round_trip():
    original = Entry(
        log="line\r\n",
        stream="stdout",
        time=datetime(2022, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc),
    )
    assert Entry.from_dict(json.loads(original.to_json())) == original


def test_encode_writes_one_entry_per_complete_line():
    out = io.StringIO()
    encode(out, io.BytesIO(b"a\nb\npartial"), io.BytesIO(b"err\n"))
    entries = [Entry.from_dict(json.loads(line)) for line in out.getvalue().splitlines()]
    stdout_logs = [e.log for e in entries if e.stream == "stdout"]
    stderr_logs = [e.log for e in entries if e.stream == "stderr"]
    assert stdout_logs == ["a\n", "b\n"]
    assert stderr_logs == ["err\n"]


def test_encode_then_decode_round_trip():
    buf = io.StringIO()
    encode(buf, io.StringIO("one\ntwo\n"), io.StringIO("three\n"))
    out, err = io.StringIO(), io.StringIO()
    decode(out, err, io.StringIO(buf.getvalue()))
    assert out.getvalue() == "one\ntwo\n"
    assert err.getvalue() == "three\n"


def test_decode_skips_unknown_stream():
    data = '{"log":"x\\n","stream":"other","time":"2021-01-01T00:00:00Z"}\n'
    data += '{"log":"y\\n","stream":"stdout","time":"2021-01-01T00:00:00Z"}'
    out, err = io.StringIO(), io.StringIO()
    decode(out, err, io.StringIO(data))
    assert out.getvalue() == "y\n"
    assert err.getvalue() == ""


def test_decode_invalid_json_raises():
    with pytest.raises(ValueError):
        decode(io.StringIO(), io.StringIO(), io.StringIO("{not json"))