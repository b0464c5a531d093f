"""Tests for command-line parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from sitemonitor.cli import parse_args


class TestParseArgs:
    """Tests for parse_args."""

    def test_defaults(self) -> None:
        parsed = parse_args([])

        assert parsed.config is None
        assert parsed.dbname is None
        assert parsed.dbport is None
        assert parsed.verbose is False
        assert parsed.log_level is None
        assert parsed.once is False
        assert parsed.env_file is None

    def test_short_database_options(self) -> None:
        parsed = parse_args(
            ["-c", "sites.json", "-d", "samples", "-u", "monitor", "-p", "pw", "-H", "db", "-n", "3307"]
        )

        assert parsed.config == Path("sites.json")
        assert parsed.dbname == "samples"
        assert parsed.dbuser == "monitor"
        assert parsed.dbpass == "pw"
        assert parsed.dbhost == "db"
        assert parsed.dbport == 3307

    def test_flags(self) -> None:
        parsed = parse_args(["-v", "--once", "--log-level", "WARNING", "--env-file", "x.env"])

        assert parsed.verbose is True
        assert parsed.once is True
        assert parsed.log_level == "WARNING"
        assert parsed.env_file == Path("x.env")

    def test_invalid_port_exits(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--dbport", "abc"])

    def test_invalid_log_level_exits(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "TRACE"])
