"""Unit tests for content fingerprints and change detection."""

from stacker_kb.rag.fingerprint import ChangeDetector, Decision, fingerprint


class TestFingerprint:
    """Test fingerprint stability."""

    def test_same_content_same_hash(self):
        assert fingerprint("hello") == fingerprint("hello")

    def test_different_content_different_hash(self):
        assert fingerprint("hello") != fingerprint("hello!")

    def test_known_sha256_value(self):
        assert fingerprint("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_fixed_length(self):
        assert len(fingerprint("")) == len(fingerprint("x" * 10_000)) == 64


class TestChangeDetector:
    """Test reuse/re-embed decisions."""

    def test_matching_hash_is_reused(self, make_record):
        detector = ChangeDetector([make_record("a.py", [1.0], content_hash="h1")])
        assert detector.decide("a.py", "h1") == Decision.REUSE

    def test_changed_hash_is_reembedded(self, make_record):
        detector = ChangeDetector([make_record("a.py", [1.0], content_hash="h1")])
        assert detector.decide("a.py", "h2") == Decision.REEMBED

    def test_unknown_source_is_reembedded(self):
        assert ChangeDetector().decide("new.py", "h1") == Decision.REEMBED

    def test_force_reembeds_matching_hash(self, make_record):
        detector = ChangeDetector([make_record("a.py", [1.0], content_hash="h1")], force=True)
        assert detector.decide("a.py", "h1") == Decision.REEMBED

    def test_prior_records_sorted_by_chunk_index(self, make_record):
        records = [
            make_record("a.py", [1.0], chunk_index=1),
            make_record("a.py", [1.0], chunk_index=0),
            make_record("b.py", [1.0]),
        ]
        detector = ChangeDetector(records)
        assert [r.chunk_index for r in detector.prior_records("a.py")] == [0, 1]
        assert detector.prior_records("missing.py") == []
        assert detector.previous_hashes == {"a.py": "h0", "b.py": "h0"}
