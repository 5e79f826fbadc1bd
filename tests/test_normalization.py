from __future__ import annotations

import pytest

from agenthub.exceptions import MalformedTelemetryError
from agenthub.ingestion.normalize import extract_list, extract_str, iter_records, parse_record, summarize_for_log
from agenthub.models import GpsFix, SmsRecord


def test_extract_helpers_tolerate_bad_shapes() -> None:
    assert extract_list({"apps": [1, 2]}, "apps") == [1, 2]
    assert extract_list({"apps": "nope"}, "apps") == []
    assert extract_list(["apps"], "apps") == []
    assert extract_str({"type": 3}, "type") == "3"
    assert extract_str({"type": None}, "type") is None
    assert extract_str("type", "type") is None


def test_parse_record_reports_missing_fields() -> None:
    with pytest.raises(MalformedTelemetryError, match="latitude") as excinfo:
        parse_record(GpsFix, {"longitude": 1.0}, kind="gpsData")
    assert excinfo.value.kind == "gpsData"

    with pytest.raises(MalformedTelemetryError, match="not an object"):
        parse_record(GpsFix, [1.0, 2.0], kind="gpsData")


def test_iter_records_pairs_records_with_errors() -> None:
    results = list(iter_records(SmsRecord, [{"address": "+1", "body": "x"}, "junk"], kind="smsData"))

    assert results[0][0] is not None
    assert results[0][1] is None
    assert results[1][0] is None
    assert isinstance(results[1][1], MalformedTelemetryError)


def test_summary_replaces_file_contents_with_size() -> None:
    summary = summarize_for_log({"name": "rec.mp3", "buffer": "c2VjcmV0", "nested": {"buffer": [1, 2, 3]}})

    assert summary == {"name": "rec.mp3", "buffer": "<8 base64 chars>", "nested": {"buffer": "<3 bytes>"}}
    assert summarize_for_log(b"\x00\x01") == "<2 bytes>"


def test_summary_truncates_long_text_and_lists() -> None:
    assert summarize_for_log("x" * 10, max_text=4) == "xxxx...<10 chars>"
    assert summarize_for_log("short", max_text=10) == "short"
    assert summarize_for_log(list(range(5)), max_items=2) == [0, 1, "<+3 more>"]
    assert summarize_for_log(42) == 42
