"""Tests for the JSON-lines replay source."""

from __future__ import annotations

import json
import logging

import pytest

from kizo_indexer.ingestor.models import Transaction
from kizo_indexer.ingestor.replay import batched, parse_transactions, read_batches


def _line(version: int) -> str:
    return json.dumps({"version": version, "block_height": version // 10, "events": []})


class TestParseTransactions:
    """Tests for parse_transactions."""

    def test_parses_lines(self) -> None:
        txns = list(parse_transactions([_line(1), "", _line(2)]))
        assert [t.version for t in txns] == [1, 2]

    def test_skips_malformed(self, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            txns = list(parse_transactions([_line(1), "{oops", json.dumps({"block_height": 1}), _line(4)]))
        assert [t.version for t in txns] == [1, 4]
        assert "line 2" in caplog.text
        assert "line 3" in caplog.text


class TestBatched:
    """Tests for batched."""

    def test_groups_in_order(self) -> None:
        txns = [Transaction(v, 1, ()) for v in range(5)]
        batches = list(batched(txns, 2))
        assert [len(b) for b in batches] == [2, 2, 1]
        assert batches[0].start_version == 0
        assert batches[-1].end_version == 4

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            list(batched([], 0))


class TestReadBatches:
    """Tests for read_batches."""

    @pytest.mark.asyncio
    async def test_reads_file(self, tmp_path) -> None:
        path = tmp_path / "txns.jsonl"
        path.write_text("\n".join(_line(v) for v in range(1, 6)) + "\n", encoding="utf-8")

        batches = [b async for b in read_batches(path, batch_size=3)]

        assert [(b.start_version, b.end_version) for b in batches] == [(1, 3), (4, 5)]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            _ = [b async for b in read_batches(tmp_path / "missing.jsonl", batch_size=1)]
