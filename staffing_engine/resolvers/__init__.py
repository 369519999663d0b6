"""
Join resolvers

Foreign-key joins across the collections of one snapshot.
"""

from .join_resolver import (
    Relation,
    denormalize,
    index_by_id,
    join_assignments,
    join_documents,
    join_payments,
    join_referrals,
    join_timesheets,
    resolve,
)

__all__ = [
    'Relation',
    'denormalize',
    'index_by_id',
    'resolve',
    'join_assignments',
    'join_timesheets',
    'join_documents',
    'join_payments',
    'join_referrals'
]
