"""Claim verification routing."""

from donation_sync.verify.router import VerificationRouter

__all__ = ["VerificationRouter"]
