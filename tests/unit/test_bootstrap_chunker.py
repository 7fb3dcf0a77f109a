"""Unit tests for bootstrap payload chunking."""

from __future__ import annotations

import hashlib
import random

import pytest

from zarf_core.bootstrap import CHUNK_SIZE, PayloadChecksumError, chunk_name, reassemble, split_payload
from zarf_core.bootstrap.chunker import MAX_CHUNKS


class TestSplitPayload:
    """Tests for split_payload."""

    def test_one_point_three_mib_makes_three_chunks(self):
        """Test a 1.3 MiB payload splits into two full chunks and a remainder."""
        blob = random.Random(7).randbytes(int(1.3 * 1024 * 1024))
        payload = split_payload(blob)

        assert len(payload.chunks) == 3
        assert [len(c.data) for c in payload.chunks] == [CHUNK_SIZE, CHUNK_SIZE, len(blob) - 2 * CHUNK_SIZE]
        assert payload.sha256 == hashlib.sha256(blob).hexdigest()
        assert payload.size == len(blob)

    def test_chunk_names_are_zero_padded(self):
        """Test chunk names sort in index order."""
        payload = split_payload(b"x" * 25, chunk_size=2)
        assert payload.chunk_names[:3] == ["zarf-payload-000", "zarf-payload-001", "zarf-payload-002"]
        assert payload.chunk_names == sorted(payload.chunk_names)

    def test_exact_multiple_has_no_empty_chunk(self):
        """Test a blob of exactly two chunks yields two chunks."""
        payload = split_payload(b"ab" * 8, chunk_size=8)
        assert [c.data for c in payload.chunks] == [b"abababab", b"abababab"]

    def test_empty_blob(self):
        """Test an empty blob yields no chunks."""
        payload = split_payload(b"")
        assert payload.chunks == ()
        assert payload.sha256 == hashlib.sha256(b"").hexdigest()

    def test_rejects_non_positive_chunk_size(self):
        """Test chunk size must be positive."""
        with pytest.raises(ValueError):
            split_payload(b"data", chunk_size=0)

    def test_rejects_too_many_chunks(self):
        """Test payloads needing more than the maximum chunk count are rejected."""
        with pytest.raises(ValueError, match="more than"):
            split_payload(b"x" * (MAX_CHUNKS + 1), chunk_size=1)


class TestReassemble:
    """Tests for reassemble."""

    def test_reassembles_in_any_arrival_order(self):
        """Test reassembly by name is independent of arrival order."""
        blob = random.Random(3).randbytes(5000)
        payload = split_payload(blob, chunk_size=512)
        pairs = [(c.name, c.data) for c in payload.chunks]
        random.Random(11).shuffle(pairs)

        assert reassemble(pairs, payload.sha256) == blob
        assert reassemble(reversed(pairs), payload.sha256) == blob

    def test_checksum_mismatch(self):
        """Test a corrupted chunk fails verification."""
        payload = split_payload(b"hello world", chunk_size=4)
        pairs = [(c.name, c.data) for c in payload.chunks]
        pairs[1] = (pairs[1][0], b"XXXX")

        with pytest.raises(PayloadChecksumError):
            reassemble(pairs, payload.sha256)

    def test_missing_chunk(self):
        """Test a missing chunk fails verification."""
        payload = split_payload(b"hello world", chunk_size=4)
        pairs = [(c.name, c.data) for c in payload.chunks][:-1]

        with pytest.raises(PayloadChecksumError):
            reassemble(pairs, payload.sha256)

    def test_chunk_name(self):
        """Test chunk name format."""
        assert chunk_name(7) == "zarf-payload-007"
        assert chunk_name(123) == "zarf-payload-123"
