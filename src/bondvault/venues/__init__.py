"""Simulated collaborators: block clock, tokens, staking, bonds, router."""
