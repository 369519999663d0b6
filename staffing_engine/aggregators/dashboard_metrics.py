"""
Dashboard statistics

Named per-screen statistics composed from the metric aggregator primitives.
Each function takes already-fetched (and, where noted, joined) records and
returns a plain dict ready for the JSON envelope.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models import (
    AssignmentStatus,
    BonusStatus,
    ClientStatus,
    DocumentStatus,
    JobStatus,
    PaymentStatus,
    ReferralStatus,
    TimesheetStatus,
    WorkerStatus,
)
from .metric_aggregator import (
    average,
    bucket_by_period,
    distribution,
    expiring_soon,
    expiry_breakdown,
    field_getter,
    group_by,
    labour_cost,
    overdue,
    period_key,
    ratio,
    status_counts,
    top_n,
    total_of,
)

ASSIGNMENT_RATES = ("rate", "hourly_rate")
TIMESHEET_RATES = ("rate", "assignment.rate", "assignment.hourly_rate")


def _is(status):
    return lambda record: getattr(record, "status", None) is status


def counts_of(records: Iterable[Any], status) -> int:
    return sum(1 for record in records if getattr(record, "status", None) is status)


def _display_name(record: Any, relation: str, fallback: Optional[str]) -> str:
    related = field_getter(relation)(record)
    name = getattr(related, "full_name", None) if related is not None else None
    return name or (fallback or "")


def referral_stats(referrals: Sequence[Any], top: int = 5) -> Dict[str, Any]:
    """Referral programme statistics.

    Args:
        referrals: referrals, optionally joined with their ``referrer``
        top: number of top referrers to report
    """
    counts = status_counts(referrals, ReferralStatus)

    def paid(record):
        return getattr(record, "bonus_status", None) is BonusStatus.PAID

    referrers = []
    for referrer_id, group in group_by(referrals, "referrer_id").items():
        if referrer_id is None:
            continue
        referrers.append({
            'id': referrer_id,
            'name': _display_name(group[0], "referrer", referrer_id),
            'referrals': len(group),
            'completed': counts_of(group, ReferralStatus.COMPLETED),
            'bonus_earned': total_of(group, "bonus_amount", where=paid),
        })
    ranked = top_n(((r['id'], r['referrals']) for r in referrers), top)
    by_id = {r['id']: r for r in referrers}

    monthly = []
    for period, group in sorted(group_by(referrals, lambda r: period_key(r.created_at)).items(),
                                key=lambda item: (item[0] == "undated", item[0])):
        monthly.append({
            'month': period,
            'referrals': len(group),
            'registrations': sum(1 for r in group if r.status in (ReferralStatus.REGISTERED,
                                                                   ReferralStatus.COMPLETED)),
            'completions': counts_of(group, ReferralStatus.COMPLETED),
            'bonus_paid': total_of(group, "bonus_amount", where=paid),
        })
    dated = [month for month in monthly if month['month'] != "undated"]
    best = None
    for month in dated:
        if best is None or month['completions'] > best['completions']:
            best = month
    total_bonus_paid = total_of(referrals, "bonus_amount", where=paid)

    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'completed': counts[ReferralStatus.COMPLETED.value],
        'pending': counts[ReferralStatus.PENDING.value],
        'sent': counts[ReferralStatus.SENT.value],
        'registered': counts[ReferralStatus.REGISTERED.value],
        'expired': counts[ReferralStatus.EXPIRED.value],
        'total_bonus_paid': total_bonus_paid,
        'average_bonus': total_bonus_paid / counts.total if counts.total else 0.0,
        'conversion_rate': ratio(counts[ReferralStatus.COMPLETED.value], counts.total),
        'top_referrers': [by_id[referrer_id] for referrer_id, _ in ranked],
        'monthly_trend': monthly,
        'best_month': best['month'] if best else None,
        'average_monthly_referrals': average(month['referrals'] for month in dated),
        'average_monthly_completions': average(month['completions'] for month in dated),
    }


def compliance_stats(documents: Sequence[Any], now: datetime, soon_days: int = 30,
                     renewal_days: int = 90) -> Dict[str, Any]:
    """Document status and expiry statistics; ``documents`` may be joined with ``worker``."""
    counts = status_counts(documents, DocumentStatus)
    breakdown = expiry_breakdown(documents, now, soon_days, renewal_days)
    soon = sorted(expiring_soon(documents, now, soon_days), key=lambda d: (d.expiry_date, d.id))
    lapsed = overdue(documents, now)
    lapsed_ids = {d.id for d in lapsed}
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'expiry': {
            'overdue': breakdown.overdue,
            'expires_now': breakdown.expires_now,
            'expiring_soon': breakdown.expiring_soon,
            'due_for_renewal': breakdown.due_for_renewal,
            'up_to_date': breakdown.up_to_date,
            'no_expiry': breakdown.no_expiry,
        },
        'expiring_soon_ids': [d.id for d in soon],
        'overdue_ids': sorted(lapsed_ids),
        'overdue_still_valid': sum(1 for d in lapsed if d.status is DocumentStatus.VALID),
        'compliance_rate': ratio(sum(1 for d in documents
                                     if d.status is DocumentStatus.VALID and d.id not in lapsed_ids),
                                 counts.total),
    }


def assignment_stats(assignments: Sequence[Any]) -> Dict[str, Any]:
    counts = status_counts(assignments, AssignmentStatus)
    active = _is(AssignmentStatus.ACTIVE)
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'weekly_labour_cost': labour_cost(assignments, "hours_per_week", ASSIGNMENT_RATES, where=active),
        'weekly_hours': total_of(assignments, "hours_per_week", where=active),
        'average_rate': average(a.effective_rate for a in assignments if active(a)),
    }


def timesheet_stats(timesheets: Sequence[Any], period: str = "week") -> Dict[str, Any]:
    """Timesheet hours and approved cost.

    ``timesheets`` should be joined with ``assignment`` so that a timesheet
    without its own rate falls back to the assignment's rate.
    """
    counts = status_counts(timesheets, TimesheetStatus)
    approved = _is(TimesheetStatus.APPROVED)
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'total_hours': total_of(timesheets, "total_hours"),
        'approved_hours': total_of(timesheets, "total_hours", where=approved),
        'pending_hours': total_of(timesheets, "total_hours", where=_is(TimesheetStatus.PENDING)),
        'approved_cost': labour_cost(timesheets, "total_hours", TIMESHEET_RATES, where=approved),
        'hours_by_period': [
            {'period': b.period, 'count': b.count, 'hours': b.total}
            for b in bucket_by_period(timesheets, "week_starting", "total_hours", period)
        ],
    }


def billing_summary(timesheets: Sequence[Any]) -> Dict[str, Any]:
    """Approved hours billed per assignment (joined timesheets)"""
    approved = [t for t in timesheets if t.status is TimesheetStatus.APPROVED]
    lines = []
    for assignment_id, group in group_by(approved, "assignment_id").items():
        first = group[0]
        hours = total_of(group, "total_hours")
        amount = labour_cost(group, "total_hours", TIMESHEET_RATES)
        lines.append({
            'assignment_id': assignment_id,
            'job_title': getattr(field_getter("job")(first), "title", "") or "",
            'worker_name': _display_name(first, "worker", None),
            'hours': hours,
            'rate': amount / hours if hours else 0.0,
            'amount': amount,
        })
    return {
        'lines': lines,
        'total_hours': sum(line['hours'] for line in lines),
        'total_amount': sum(line['amount'] for line in lines),
        'awaiting_approval': counts_of(timesheets, TimesheetStatus.PENDING),
    }


def payment_stats(payments: Sequence[Any], period: str = "month") -> Dict[str, Any]:
    counts = status_counts(payments, PaymentStatus)
    paid = _is(PaymentStatus.PAID)
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'paid_total': total_of(payments, "amount", where=paid),
        'net_paid_total': total_of(payments, "net_amount", where=paid),
        'pending_total': total_of(payments, "amount", where=_is(PaymentStatus.PENDING)),
        'failed_count': counts[PaymentStatus.FAILED.value],
        'paid_hours': total_of(payments, "hours", where=paid),
        'paid_by_period': [
            {'period': b.period, 'count': b.count, 'amount': b.total}
            for b in bucket_by_period(payments, "effective_date", "amount", period, where=paid)
        ],
    }


def client_stats(clients: Sequence[Any], jobs: Sequence[Any] = (),
                 assignments: Sequence[Any] = ()) -> Dict[str, Any]:
    """Client status counts and a per-client roll-up of jobs and spend"""
    counts = status_counts(clients, ClientStatus)
    jobs_by_client = group_by(jobs, "client_id")
    assignments_by_client = group_by(assignments, "client_id")
    active_assignment = _is(AssignmentStatus.ACTIVE)

    rollup: List[Dict[str, Any]] = []
    for client in clients:
        client_jobs = jobs_by_client.get(client.id, ())
        client_assignments = assignments_by_client.get(client.id, ())
        rollup.append({
            'id': client.id,
            'company_name': client.company_name,
            'status': client.status.value if client.status else client.raw_status,
            'job_count': len(client_jobs),
            'active_jobs': counts_of(client_jobs, JobStatus.ACTIVE),
            'active_assignments': sum(1 for a in client_assignments if active_assignment(a)),
            'weekly_spend': labour_cost(client_assignments, "hours_per_week", ASSIGNMENT_RATES,
                                        where=active_assignment),
        })
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'clients': rollup,
    }


def worker_stats(workers: Sequence[Any], assignments: Sequence[Any] = (),
                 timesheets: Sequence[Any] = (), top: int = 5) -> Dict[str, Any]:
    """Worker status counts, ratings, skills and per-worker earnings.

    Earnings are approved timesheet hours times the timesheet (or assignment)
    rate, so ``timesheets`` should be joined with ``assignment``.
    """
    counts = status_counts(workers, WorkerStatus)
    assignments_by_worker = group_by(assignments, "worker_id")
    approved = [t for t in timesheets if t.status is TimesheetStatus.APPROVED]
    timesheets_by_worker = group_by(approved, lambda t: t.worker_id or field_getter("assignment.worker_id")(t))

    rows = []
    for worker in workers:
        mine = timesheets_by_worker.get(worker.id, ())
        rows.append({
            'id': worker.id,
            'name': worker.full_name,
            'status': worker.status.value if worker.status else worker.raw_status,
            'rating': worker.rating,
            'active_assignments': counts_of(assignments_by_worker.get(worker.id, ()), AssignmentStatus.ACTIVE),
            'hours': total_of(mine, "total_hours"),
            'earnings': labour_cost(mine, "total_hours", TIMESHEET_RATES),
        })
    rated = [w.rating for w in workers if w.rating > 0]
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'average_rating': average(rated),
        'completed_jobs': sum(w.completed_jobs for w in workers),
        'top_skills': [{'skill': k, 'workers': v} for k, v in top_n(distribution(workers, "skills"), top)],
        'workers': rows,
    }


def job_stats(jobs: Sequence[Any], assignments: Sequence[Any] = (), top: int = 5) -> Dict[str, Any]:
    """Job status counts, fill rate and most requested skills"""
    counts = status_counts(jobs, JobStatus)
    staffed = {a.job_id for a in assignments
               if a.status in (AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED) and a.job_id}
    filled = sum(1 for job in jobs if job.id in staffed)
    return {
        'total': counts.total,
        'by_status': counts.to_dict(),
        'filled': filled,
        'fill_rate': ratio(filled, counts.total),
        'top_skills': [{'skill': k, 'jobs': v} for k, v in top_n(distribution(jobs, "skills"), top)],
        'average_salary_max': average(j.salary_max for j in jobs if j.salary_max > 0),
    }
