"""Tests for device fingerprint derivation."""
import hashlib

from authguard.auth.fingerprint import fingerprint


class TestFingerprint:

    def test_is_lowercase_sha256_hex(self):
        digest = fingerprint("device-1", "mobile", "Mozilla/5.0")
        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)

    def test_is_deterministic(self):
        assert fingerprint("d", "t", "ua") == fingerprint("d", "t", "ua")

    def test_matches_plain_join_when_no_escaping_needed(self):
        expected = hashlib.sha256("d|t|ua".encode()).hexdigest()
        assert fingerprint("d", "t", "ua") == expected

    def test_missing_fields_keep_their_position(self):
        assert fingerprint("a", None, "b") == fingerprint("a", "", "b")
        assert fingerprint("a", "", "b") != fingerprint("a", "b", "")
        assert fingerprint(None, None, None) == hashlib.sha256("||".encode()).hexdigest()

    def test_field_boundaries_cannot_be_shifted(self):
        assert fingerprint("a", "", "b") != fingerprint("a|", "b", "")
        assert fingerprint("a|b", "", "") != fingerprint("a", "b", "")
        assert fingerprint("a,b", "", "") != fingerprint("a", "", "b")
        assert fingerprint("a\\", "|b", "") != fingerprint("a\\|", "b", "")

    def test_different_devices_differ(self):
        assert fingerprint("device-1", "mobile", "ua") != fingerprint("device-2", "mobile", "ua")
