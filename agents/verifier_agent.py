"""
Verifier Agent
Reports the solving gateway's verification verdict.

Correctness is never re-derived here; the gateway's ``verificationStatus``
is the verdict.
"""

import logging

from agents.state import Solution, VerificationStatus

logger = logging.getLogger(__name__)


VERIFICATION_MESSAGES = {
    VerificationStatus.VERIFIED: "Solution verified",
    VerificationStatus.UNCERTAIN: "Verification uncertain",
    VerificationStatus.FAILED: "Verification failed",
}


class VerifierAgent:

    def verify(self, solution: Solution) -> str:
        """
        Convert the solution's verification status to a stage message.

        Args:
            solution: Solution returned by the solving gateway

        Returns:
            Short human-readable verdict
        """
        status = solution.verification_status
        if status != VerificationStatus.VERIFIED:
            logger.info("Solution not verified: %s (confidence %.2f)", status.value, solution.confidence)
        return VERIFICATION_MESSAGES[status]
