"""
Managers

Optimistic mutation reconciliation over published view states.
"""

from .mutation_reconciler import MutationReconciler, TRANSITIONS

__all__ = [
    'MutationReconciler',
    'TRANSITIONS'
]
