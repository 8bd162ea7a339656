"""Tests for trigger_engine.checksum."""

from __future__ import annotations

import hashlib

from trigger_engine.checksum import CHECKSUM_ALGORITHM, compute_checksum


class TestComputeChecksum:
    def test_deterministic(self):
        a = compute_checksum("audit_users", "users", 1, "BODY", "NEW.id > 0")
        b = compute_checksum("audit_users", "users", 1, "BODY", "NEW.id > 0")
        assert a == b

    def test_hex_sha256(self):
        value = compute_checksum("t", "users", 1, None, None)
        assert len(value) == 64
        int(value, 16)

    def test_known_encoding(self):
        expected = hashlib.sha256(b"1:t5:users1:10:0:").hexdigest()
        assert compute_checksum("t", "users", 1, None, None) == expected

    def test_none_hashes_as_empty_string(self):
        assert compute_checksum("t", "users", 1, None, None) == compute_checksum("t", "users", 1, "", "")

    def test_version_accepts_int_or_text(self):
        assert compute_checksum("t", "users", 3, "b", "c") == compute_checksum("t", "users", "3", "b", "c")

    def test_field_boundaries_are_unambiguous(self):
        left = compute_checksum("ab", "c", 1, "x", None)
        right = compute_checksum("a", "bc", 1, "x", None)
        assert left != right

    def test_body_and_condition_boundary(self):
        assert compute_checksum("t", "users", 1, "body", "x") != compute_checksum("t", "users", 1, "bodyx", None)

    def test_every_field_changes_the_checksum(self):
        base = ("t", "users", 1, "body", "cond")
        reference = compute_checksum(*base)
        variants = [
            ("t2", "users", 1, "body", "cond"),
            ("t", "orders", 1, "body", "cond"),
            ("t", "users", 2, "body", "cond"),
            ("t", "users", 1, "body2", "cond"),
            ("t", "users", 1, "body", "cond2"),
        ]
        for variant in variants:
            assert compute_checksum(*variant) != reference

    def test_multibyte_text_uses_byte_length(self):
        expected = hashlib.sha256("2:é5:users1:10:0:".encode()).hexdigest()
        assert compute_checksum("é", "users", 1, None, None) == expected

    def test_algorithm_is_versioned(self):
        assert CHECKSUM_ALGORITHM == "sha256-lp-v1"
