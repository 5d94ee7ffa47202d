"""Tests for utility functions."""

import json
import re
from datetime import datetime, timezone

import pytest

from teamswarm.utils import (
    atomic_write,
    format_timestamp,
    generate_id,
    load_json,
    save_json,
    to_base36,
    utc_now_iso,
)


class TestAtomicWrite:

    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "a" / "b" / "file.txt"
        atomic_write(path, "hello")
        assert path.read_text() == "hello"

    def test_replaces_existing(self, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("old")
        atomic_write(path, "new")
        assert path.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]


class TestJson:

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "data.json"
        save_json(path, {"teamName": "acme", "members": []})
        assert load_json(path) == {"teamName": "acme", "members": []}
        assert path.read_text().startswith("{\n  ")

    def test_non_ascii_kept(self, tmp_path):
        path = tmp_path / "data.json"
        save_json(path, {"name": "zoë"})
        assert "zoë" in path.read_text(encoding="utf-8")

    def test_load_invalid(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{")
        with pytest.raises(json.JSONDecodeError):
            load_json(path)


class TestTimestamps:

    def test_format_timestamp(self):
        dt = datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2025-01-02T03:04:05.678Z"

    def test_utc_now_iso(self):
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_now_iso())


class TestIds:

    @pytest.mark.parametrize("value, expected", [(0, "0"), (35, "z"), (36, "10"), (1295, "zz")])
    def test_to_base36(self, value, expected):
        assert to_base36(value) == expected

    def test_to_base36_negative(self):
        with pytest.raises(ValueError):
            to_base36(-1)

    def test_generate_id(self):
        assert re.fullmatch(r"agent-[0-9a-z]+-[0-9a-z]{6}", generate_id("agent"))
        assert re.fullmatch(r"x-[0-9a-z]+-[0-9a-z]{2}", generate_id("x", random_length=2))

    def test_generate_id_unique(self):
        assert len({generate_id("agent") for _ in range(100)}) == 100
