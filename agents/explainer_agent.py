"""
Explainer Agent
Marks the explanation ready. The explanation text itself is produced by the
solving gateway together with the steps.
"""

import logging

from agents.state import Solution

logger = logging.getLogger(__name__)


class ExplainerAgent:

    def explain(self, solution: Solution) -> str:
        logger.debug("Explanation ready (%d steps)", len(solution.steps))
        if solution.steps:
            return f"Explanation ready ({len(solution.steps)} steps)"
        return "Explanation ready"
