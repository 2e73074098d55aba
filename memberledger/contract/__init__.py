"""
Verification rules for member transitions.
"""

from .verifier import MemberContract, VerificationFailure, VerificationResult

__all__ = ["MemberContract", "VerificationFailure", "VerificationResult"]
