"""
Solver Agent
Hands a parsed problem to the solving gateway and returns its structured
solution. The mathematics happens upstream; this stage only validates the
request and logs the outcome.
"""

import logging
import time

from agents.state import ParsedProblem, Solution

logger = logging.getLogger(__name__)


class SolverAgent:
    """
    Solve stage of the pipeline.

    ``gateway`` is anything with ``async solve(problem_text, topic) -> Solution``;
    in production that is ``llm.groq_client.GroqClient``.
    """

    def __init__(self, gateway):
        self.gateway = gateway

    async def solve(self, problem: ParsedProblem) -> Solution:
        """
        Solve a problem through the gateway.

        Raises:
            GatewayError: Propagated from the gateway unchanged
        """
        started = time.monotonic()
        solution = await self.gateway.solve(problem.problem_text, problem.topic.value)
        logger.info(
            "Solved in %.2fs: %d steps, status=%s, confidence=%.2f",
            time.monotonic() - started,
            len(solution.steps),
            solution.verification_status.value,
            solution.confidence,
        )
        return solution
