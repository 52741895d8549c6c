"""Tests for CLI logging helpers."""

import logging

from utils.logging_helpers import log_error_section, log_info_header, log_warning_section


def test_error_section(caplog):
    logger = logging.getLogger("strata.test")
    with caplog.at_level(logging.INFO):
        log_error_section("Indexing Failed", ["blob not found", ""], logger, width=10)

    assert [r.getMessage() for r in caplog.records] == [
        "=" * 10, "Indexing Failed", "blob not found", "", "=" * 10
    ]
    assert {r.levelno for r in caplog.records} == {logging.ERROR}


def test_warning_section_level(caplog):
    with caplog.at_level(logging.INFO):
        log_warning_section("Partial Report", ["layer 1: package/dpkg@v0.0.3: boom"])
    assert {r.levelno for r in caplog.records} == {logging.WARNING}


def test_info_header(caplog):
    with caplog.at_level(logging.INFO):
        log_info_header("Indexing sha256:m", width=4, char="-")
    assert [r.getMessage() for r in caplog.records] == ["----", "Indexing sha256:m", "----"]
