"""
Oracle Guard.

Resilient request orchestration for language-model oracles in tick-based
simulations.
"""

__version__ = "0.1.0"
