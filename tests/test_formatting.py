import pytest

from layerlens.service.job_status import format_job_status_display
from layerlens.utils.formatting import (
    calculate_percent,
    extract_id,
    format_bytes,
    format_elapsed,
    format_percent,
    format_signed_bytes,
    format_signed_percent,
    get_error_message,
    join_url,
)


class TestFormatBytes:
    @pytest.mark.parametrize("size,expected", [
        (0, "0 Bytes"),
        (None, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1024 * 1024 * 3.25, "3.25 MB"),
        (1024 ** 3, "1 GB"),
        (1024 ** 8 * 3, "3 YB"),
    ])
    def test_format_bytes(self, size, expected):
        assert format_bytes(size) == expected

    def test_beyond_float_range(self):
        assert format_bytes(10 ** 400).endswith(" YB")
        assert format_signed_bytes(-(10 ** 400)).startswith("-")

    def test_signed(self):
        assert format_signed_bytes(2048) == "+2 KB"
        assert format_signed_bytes(-512) == "-512 Bytes"
        assert format_signed_bytes(0) == "0 Bytes"


class TestPercent:
    def test_format_percent(self):
        assert format_percent(0.25) == "25.0%"
        assert format_percent(None) == "0%"

    def test_signed_percent(self):
        assert format_signed_percent(0.05) == "+5.0%"
        assert format_signed_percent(-0.1) == "-10.0%"

    def test_calculate_percent(self):
        assert calculate_percent(1, 4) == 0.25
        assert calculate_percent(1, 0) == 0.0
        assert calculate_percent(10 ** 400, 1) == 0.0
        assert format_percent(10 ** 400) == "0%"


class TestIdentifiers:
    def test_extract_id(self):
        assert extract_id("sha256:0123456789abcdef0123") == "0123456789ab"
        assert extract_id("short") == "short"

    def test_join_url(self):
        assert join_url("http://host:8080/", "/analyze") == "http://host:8080/analyze"
        assert join_url("http://host", "history") == "http://host/history"


class TestElapsed:
    @pytest.mark.parametrize("seconds,expected", [
        (3, "3s"),
        (3.9, "3s"),
        (123, "2m 3s"),
        (3723, "1h 2m 3s"),
        (-5, "0s"),
        (None, None),
    ])
    def test_format_elapsed(self, seconds, expected):
        assert format_elapsed(seconds) == expected


class TestErrorMessage:
    def test_exception(self):
        assert get_error_message(ValueError("bad days")) == "bad days"
        assert get_error_message(RuntimeError()) == "RuntimeError"

    def test_payloads(self):
        assert get_error_message({"message": "nope"}) == "nope"
        assert get_error_message({"Message": "Nope"}) == "Nope"
        assert get_error_message({"code": 3}) == '{"code": 3}'
        assert get_error_message("plain") == "plain"


class TestJobStatusDisplay:
    def test_running_with_stage_message(self):
        display = format_job_status_display("running", "Extracting layers", "12s", "nginx:latest")
        assert display.status_line == "Status: Analyzing image - Extracting layers (12s) - nginx:latest"
        assert display.is_active
        assert display.detail_message is None

    def test_redundant_running_message_hidden(self):
        display = format_job_status_display("running", "Analyzing image")
        assert display.status_line == "Status: Analyzing image"

    def test_failure_keeps_message_apart(self):
        display = format_job_status_display("failed", "  image not found  ")
        assert display.status_line == "Status: Analysis failed"
        assert display.is_failure
        assert not display.is_active
        assert display.detail_message == "image not found"

    def test_unknown_status_title_cased(self):
        display = format_job_status_display("processing_layers")
        assert display.status_line == "Status: Processing Layers"
