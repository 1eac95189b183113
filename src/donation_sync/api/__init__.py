"""HTTP surface for claim submission."""

from donation_sync.api.claims import CLAIMS_KEY, ClaimProcessor, claim_from_json, handle_claim

__all__ = ["CLAIMS_KEY", "ClaimProcessor", "claim_from_json", "handle_claim"]
