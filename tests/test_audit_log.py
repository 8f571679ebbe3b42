"""Tests for the audit log."""

from __future__ import annotations

import json
from pathlib import Path

from deployctl.audit_log import (
    CreationSummary,
    ErasureSummary,
    format_audit_entry,
    get_audit_log_path,
    log_operation,
    read_audit_log,
)


def test_log_and_read_back(tmp_path: Path) -> None:
    log_operation(tmp_path, "deploy", "fuji", created=CreationSummary(artifacts=["EventFactory"], files=5))
    log_operation(
        tmp_path,
        "reset",
        "fuji",
        erased=ErasureSummary(artifacts=["EventFactory"], wiring=["BoundaryNFT.factory-nft"], files=1),
        metadata={"chain_id": 43113},
    )

    entries = read_audit_log(tmp_path)

    assert [e.operation for e in entries] == ["deploy", "reset"]
    assert entries[0].created.files == 5
    assert entries[1].erased.wiring == ["BoundaryNFT.factory-nft"]
    assert read_audit_log(tmp_path, last_n=1)[0].operation == "reset"


def test_malformed_lines_are_skipped(tmp_path: Path) -> None:
    log_operation(tmp_path, "export", "fuji")
    with get_audit_log_path(tmp_path).open("a", encoding="utf-8") as f:
        f.write("not json\n")
        f.write(json.dumps({"operation": "missing timestamp"}) + "\n")

    assert [e.operation for e in read_audit_log(tmp_path)] == ["export"]


def test_missing_log_is_empty(tmp_path: Path) -> None:
    assert read_audit_log(tmp_path / "nowhere") == []


def test_read_for_one_network(tmp_path: Path) -> None:
    log_operation(tmp_path, "deploy", "fuji")
    log_operation(tmp_path, "deploy", "avalanche")
    log_operation(tmp_path, "export", "fuji")
    log_operation(tmp_path, "reset", "avalanche")

    assert [e.operation for e in read_audit_log(tmp_path, network="fuji")] == ["deploy", "export"]
    (last,) = read_audit_log(tmp_path, last_n=1, network="fuji")
    assert last.operation == "export"


def test_format_entry(tmp_path: Path) -> None:
    entry = log_operation(
        tmp_path,
        "reset",
        "fuji",
        erased=ErasureSummary(artifacts=["A", "B"], wiring=["A.x"]),
        metadata={"chain_id": 43113},
    )

    text = format_audit_entry(entry)

    assert text.splitlines()[0].endswith("reset (fuji)")
    assert "Erased: 2 artifacts, 1 wiring actions" in text
    assert "chain_id: 43113" in text
