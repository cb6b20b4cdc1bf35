"""Simulation engine: Simulation, executors, TokenRouter, TokenManager, expressions."""

from tokensim.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from tokensim.engine.expression_parser import ExpressionParser, evaluate_formula
from tokensim.engine.router import TokenRouter
from tokensim.engine.simulation import ExecutionRecord, Simulation
from tokensim.engine.tokens import TokenManager

__all__ = [
    "DEFAULT_CLOCK",
    "Clock",
    "ExecutionRecord",
    "ExpressionParser",
    "MockClock",
    "Simulation",
    "SystemClock",
    "TokenManager",
    "TokenRouter",
    "evaluate_formula",
]
