"""
Aggregators

Pure reductions of snapshot records into counts, sums, rates and period
series, plus the named dashboard statistics built on them.
"""

__all__: list[str] = []
