"""Trust and execution core for an agent-driven DeFi assistant.

Proposed swaps and bridges pass the layered policy evaluator before they
reach a wallet; approved strategy executions are planned, signed step by
step and their outcomes recorded against the backend and session budget.
"""

__version__ = "0.1.0"
