"""Vote casting orchestration."""

from .orchestrator import VoteCaster

__all__ = ['VoteCaster']
