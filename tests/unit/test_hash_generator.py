"""Unit tests for vote commitment generation."""

import re

import pytest

from vote_integrity.hash_generator import (
    COMMITMENT_HEX_LENGTH,
    encode_vote_content,
    generate_nonce,
    generate_vote_hash,
    verify_vote_hash,
)
from vote_integrity.hash_generator.generator import main
from vote_integrity.shared.models import VoteType

KEY = "k" * 32
NONCE = "a" * 64


class TestGenerateVoteHash:
    """Determinism and sensitivity of the commitment."""

    def test_output_is_lowercase_hex(self):
        commitment = generate_vote_hash("ballot-1", "cand-1", VoteType.CANDIDATE, NONCE, KEY)

        assert len(commitment) == COMMITMENT_HEX_LENGTH
        assert re.fullmatch(r"[0-9a-f]{64}", commitment)

    def test_deterministic_for_identical_input(self):
        first = generate_vote_hash("ballot-1", None, VoteType.YES, NONCE, KEY)
        second = generate_vote_hash("ballot-1", None, VoteType.YES, NONCE, KEY)

        assert first == second

    def test_str_and_bytes_keys_agree(self):
        assert (
            generate_vote_hash("ballot-1", None, VoteType.NO, NONCE, KEY)
            == generate_vote_hash("ballot-1", None, VoteType.NO, NONCE, KEY.encode())
        )

    @pytest.mark.parametrize("field,value", [
        ("ballot_id", "ballot-2"),
        ("candidate_id", "cand-2"),
        ("vote_type", VoteType.APPROVE),
        ("nonce", "b" * 64),
        ("secret_key", "z" * 32),
    ])
    def test_single_field_change_changes_commitment(self, field, value):
        base = dict(
            ballot_id="ballot-1",
            candidate_id="cand-1",
            vote_type=VoteType.CANDIDATE,
            nonce=NONCE,
            secret_key=KEY
        )
        changed = dict(base, **{field: value})

        assert generate_vote_hash(**base) != generate_vote_hash(**changed)

    def test_null_and_empty_candidate_differ(self):
        assert (
            generate_vote_hash("ballot-1", None, VoteType.ABSTAIN, NONCE, KEY)
            != generate_vote_hash("ballot-1", "", VoteType.ABSTAIN, NONCE, KEY)
        )

    def test_field_boundaries_cannot_shift(self):
        """'ab' + 'c' and 'a' + 'bc' must not encode the same."""
        assert (
            encode_vote_content("ab", "c", VoteType.CANDIDATE, NONCE)
            != encode_vote_content("a", "bc", VoteType.CANDIDATE, NONCE)
        )

    @pytest.mark.parametrize("key", [None, "", "short", "x" * 31, b"y" * 31])
    def test_missing_or_short_key_rejected(self, key):
        with pytest.raises(ValueError):
            generate_vote_hash("ballot-1", None, VoteType.YES, NONCE, key)

    def test_unknown_vote_type_rejected(self):
        with pytest.raises(ValueError):
            generate_vote_hash("ballot-1", None, "MAYBE", NONCE, KEY)


class TestNonce:

    def test_nonce_is_32_random_bytes(self):
        nonce = generate_nonce()

        assert re.fullmatch(r"[0-9a-f]{64}", nonce)
        assert generate_nonce() != nonce

    def test_same_choice_different_nonce_differs(self):
        first = generate_vote_hash("ballot-1", None, VoteType.YES, generate_nonce(), KEY)
        second = generate_vote_hash("ballot-1", None, VoteType.YES, generate_nonce(), KEY)

        assert first != second


class TestVerifyVoteHash:

    def test_matching_commitment_verifies(self):
        commitment = generate_vote_hash("ballot-1", "cand-1", VoteType.OPPOSE, NONCE, KEY)

        assert verify_vote_hash(commitment, "ballot-1", "cand-1", VoteType.OPPOSE, NONCE, KEY)
        assert verify_vote_hash(commitment.upper(), "ballot-1", "cand-1", VoteType.OPPOSE, NONCE, KEY)

    def test_other_choice_does_not_verify(self):
        commitment = generate_vote_hash("ballot-1", "cand-1", VoteType.OPPOSE, NONCE, KEY)

        assert not verify_vote_hash(commitment, "ballot-1", "cand-1", VoteType.APPROVE, NONCE, KEY)

    @pytest.mark.parametrize("commitment", ["", "abc", "0" * 63, None])
    def test_malformed_commitment_is_false(self, commitment):
        assert not verify_vote_hash(commitment, "ballot-1", None, VoteType.YES, NONCE, KEY)


class TestCommandLine:

    def test_prints_commitment(self, capsys):
        expected = generate_vote_hash("ballot-1", None, VoteType.YES, NONCE, KEY)

        exit_code = main([
            "--ballot-id", "ballot-1",
            "--vote-type", "YES",
            "--nonce", NONCE,
            "--secret", KEY,
        ])

        assert exit_code == 0
        assert capsys.readouterr().out.strip() == expected

    def test_expect_mismatch_exits_nonzero(self, capsys):
        exit_code = main([
            "--ballot-id", "ballot-1",
            "--candidate-id", "cand-1",
            "--vote-type", "CANDIDATE",
            "--nonce", NONCE,
            "--secret", KEY,
            "--expect", "0" * 64,
        ])

        assert exit_code == 1
        assert capsys.readouterr().out.strip().endswith("MISMATCH")

    def test_short_secret_is_usage_error(self):
        with pytest.raises(SystemExit):
            main(["--ballot-id", "b", "--vote-type", "NO", "--nonce", NONCE, "--secret", "short"])
