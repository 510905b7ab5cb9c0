"""
Allocation drift calculations.

Public API:
    - AllocationCalculator().calculate(snapshot, model) -> AllocationSummary
    - AllocationFormatter() for display rows and DataFrames
"""

from .calculator import (
    AllocationCalculator,
    AllocationSummary,
    SecurityAllocation,
    SleeveAllocation,
)
from .formatters import AllocationFormatter

__all__ = [
    "AllocationCalculator",
    "AllocationFormatter",
    "AllocationSummary",
    "SecurityAllocation",
    "SleeveAllocation",
]
