"""Election results tallying with per-type quorum."""

from .calculator import (
    DEFAULT_QUORUM,
    CandidateResult,
    ReferendumResult,
    BallotResult,
    ElectionResults,
    quorum_threshold,
    calculate_candidate_results,
    calculate_referendum_results,
    calculate_election_results,
)
from .tallier import ResultsTallier

__all__ = [
    'DEFAULT_QUORUM',
    'CandidateResult',
    'ReferendumResult',
    'BallotResult',
    'ElectionResults',
    'quorum_threshold',
    'calculate_candidate_results',
    'calculate_referendum_results',
    'calculate_election_results',
    'ResultsTallier',
]
