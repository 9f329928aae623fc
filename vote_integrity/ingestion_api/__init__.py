"""HTTP surface of the vote integrity service."""
