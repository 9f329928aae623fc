"""Eligibility and ballot-rule validation."""

from .validator import (
    SHAPE_RULES,
    ShapeRule,
    check_voter_eligibility,
    check_vote_shape,
    validate_votes,
    get_eligible_ballots,
)

__all__ = [
    'SHAPE_RULES',
    'ShapeRule',
    'check_voter_eligibility',
    'check_vote_shape',
    'validate_votes',
    'get_eligible_ballots',
]
