"""
Parser Agent
Deterministic problem classifier: topic, variables and equation fragments
from raw problem text. Pure keyword matching, no I/O.
"""

import logging
import re
from itertools import takewhile
from typing import List, Tuple

from agents.state import ParsedProblem, Topic
from utils.math_normalizer import MathNormalizer

logger = logging.getLogger(__name__)


# First matching rule wins; inputs like "solve for x in dP/dx" hit several
TOPIC_RULES: List[Tuple[Topic, Tuple[str, ...]]] = [
    (Topic.PROBABILITY, ("probability", "p(", "coin", "dice")),
    (Topic.CALCULUS, ("derivative", "d/dx", "limit", "integral")),
    (Topic.LINEAR_ALGEBRA, ("matrix", "vector", "eigenvalue")),
    (Topic.ALGEBRA, ("solve", "equation", "x =", "x²")),
]

ALLOWED_VARIABLES = frozenset("xyznabc")

_SINGLE_LETTER_RE = re.compile(r'(?<![a-zA-Z])([a-zA-Z])(?![a-zA-Z])')
_OPERAND_CHARS = frozenset("0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ+-*/().^²³√' ")
_LEADING_WORDS_RE = re.compile(r"^(?:[a-zA-Z]{2,}\s+)+")


def classify_topic(text: str) -> Topic:
    lowered = text.lower()
    for topic, keywords in TOPIC_RULES:
        if any(keyword in lowered for keyword in keywords):
            return topic
    return Topic.UNKNOWN


def extract_variables(text: str) -> List[str]:
    """Allow-listed single-letter symbols, lower-cased, in order of first appearance."""
    variables = []
    for match in _SINGLE_LETTER_RE.finditer(text):
        var = match.group(1).lower()
        if var in ALLOWED_VARIABLES and var not in variables:
            variables.append(var)
    return variables


def _leading_operand(segment: str) -> str:
    return "".join(takewhile(_OPERAND_CHARS.__contains__, segment.lstrip()))


def _trailing_operand(segment: str) -> str:
    return "".join(takewhile(_OPERAND_CHARS.__contains__, reversed(segment.rstrip())))[::-1]


def extract_constraints(text: str) -> List[str]:
    """``lhs = rhs`` fragments around each ``=``; linear in the length of the text."""
    constraints = []
    segments = text.split("=")
    for left, right in zip(segments, segments[1:]):
        lhs = _LEADING_WORDS_RE.sub("", MathNormalizer.normalize_whitespace(_trailing_operand(left)))
        rhs = MathNormalizer.normalize_whitespace(_leading_operand(right))
        if not lhs or not rhs:
            continue
        constraint = f"{lhs} = {rhs}"
        if constraint not in constraints:
            constraints.append(constraint)
    return constraints


def classify(text: str) -> ParsedProblem:
    """
    Classify a problem.

    Total over strings: any text yields a ParsedProblem, with topic
    ``unknown`` when no keyword rule matches.

    Args:
        text: Raw problem text

    Returns:
        ParsedProblem with topic, variables and equation fragments
    """
    return ParsedProblem(
        problem_text=text,
        topic=classify_topic(text),
        variables=extract_variables(text),
        constraints=extract_constraints(text),
        needs_clarification=False,
    )


class ParserAgent:
    """
    Parse stage of the pipeline.
    """

    def parse(self, text: str) -> ParsedProblem:
        problem = classify(text)
        logger.info(
            "Parsed problem: topic=%s variables=%s constraints=%d",
            problem.topic.value, problem.variables, len(problem.constraints),
        )
        return problem
