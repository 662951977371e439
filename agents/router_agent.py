"""
Router Agent
Records the routing decision for a parsed problem.
"""

import logging

from agents.state import ParsedProblem, Topic

logger = logging.getLogger(__name__)


TOPIC_LABELS = {
    Topic.ALGEBRA: "Algebra",
    Topic.PROBABILITY: "Probability",
    Topic.CALCULUS: "Calculus",
    Topic.LINEAR_ALGEBRA: "Linear Algebra",
    Topic.UNKNOWN: "General",
}


class RouterAgent:
    """
    Routes problems to the solver by topic.

    There is a single solving gateway, so routing only records which topic
    hint it receives; no external call is made.
    """

    def route(self, problem: ParsedProblem) -> Topic:
        logger.info("Routing problem to %s solver", problem.topic.value)
        return problem.topic

    def describe(self, topic: Topic) -> str:
        """Stage message for the routing decision."""
        return f"Routed to {TOPIC_LABELS.get(topic, topic.value)} solver"
