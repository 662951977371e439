"""Agents package initialization"""

from .parser_agent import ParserAgent, classify
from .router_agent import RouterAgent
from .solver_agent import SolverAgent
from .verifier_agent import VerifierAgent
from .explainer_agent import ExplainerAgent
from .hitl import HITLGate, HITLPendingError
from .orchestrator import PipelineOrchestrator, PipelineBusyError

__all__ = [
    'ParserAgent',
    'classify',
    'RouterAgent',
    'SolverAgent',
    'VerifierAgent',
    'ExplainerAgent',
    'HITLGate',
    'HITLPendingError',
    'PipelineOrchestrator',
    'PipelineBusyError'
]
