"""
Engine data models

Entities fetched from the resource gateway, the typed per-collection fetch
result, immutable snapshots and view states, and the value objects produced by
aggregation and reconciliation. Every model here is a frozen value: a change
always produces a new instance.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Tuple, Type

from .utils.coercion import (
    as_id,
    as_string_tuple,
    as_text,
    coerce_count,
    coerce_quantity,
    coerce_rating,
    parse_datetime,
    parse_status,
)

OTHER_BUCKET = "other"


class ClientStatus(Enum):
    """Client account status"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    TRIAL = "TRIAL"
    SUSPENDED = "SUSPENDED"


class WorkerStatus(Enum):
    """Worker account status"""
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class JobStatus(Enum):
    """Job posting status"""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class AssignmentStatus(Enum):
    """Worker-to-job assignment status"""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TimesheetStatus(Enum):
    """Timesheet approval status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentStatus(Enum):
    """Compliance document status"""
    VALID = "VALID"
    EXPIRED = "EXPIRED"
    PENDING_REVIEW = "PENDING_REVIEW"


class PaymentStatus(Enum):
    """Payroll payment status"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class ReferralStatus(Enum):
    """Referral pipeline status"""
    PENDING = "PENDING"
    SENT = "SENT"
    REGISTERED = "REGISTERED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class BonusStatus(Enum):
    """Referral bonus status"""
    PENDING = "PENDING"
    PAID = "PAID"
    DECLINED = "DECLINED"


# Spellings seen on older screens, folded onto the closed enumerations.
STATUS_ALIASES: Dict[Type[Enum], Dict[str, str]] = {
    WorkerStatus: {"approved": "active", "pending_approval": "pending", "disabled": "inactive"},
    JobStatus: {"open": "active", "in_progress": "active", "filled": "completed",
                "canceled": "cancelled", "closed": "completed"},
    AssignmentStatus: {"upcoming": "pending", "canceled": "cancelled", "in_progress": "active"},
    TimesheetStatus: {"submitted": "pending", "draft": "pending"},
    DocumentStatus: {"pending": "PENDING_REVIEW", "review": "PENDING_REVIEW", "verified": "VALID"},
    PaymentStatus: {"processed": "paid", "completed": "paid", "processing": "pending", "error": "failed"},
    ReferralStatus: {"accepted": "REGISTERED"},
}


class _FieldReader:
    """Collects coerced-field flags while reading one payload."""

    def __init__(self, payload: Mapping[str, Any]):
        self.payload = payload if isinstance(payload, Mapping) else {}
        self.coerced: List[str] = []

    def first(self, *keys: str) -> Any:
        for key in keys:
            value = self.payload.get(key)
            if value is not None:
                return value
        return None

    def quantity(self, name: str, *keys: str) -> float:
        value, coerced = coerce_quantity(self.first(*keys))
        if coerced:
            self.coerced.append(name)
        return value

    def optional_quantity(self, name: str, *keys: str) -> Optional[float]:
        raw = self.first(*keys)
        if raw is None:
            return None
        return self.quantity(name, *keys)

    def count(self, name: str, *keys: str) -> int:
        value, coerced = coerce_count(self.first(*keys))
        if coerced:
            self.coerced.append(name)
        return value

    def rating(self, name: str, *keys: str) -> float:
        value, coerced = coerce_rating(self.first(*keys))
        if coerced:
            self.coerced.append(name)
        return value

    def status(self, enum_cls: Type[Enum], *keys: str) -> Tuple[Optional[Enum], str]:
        raw = as_text(self.first(*keys))
        return parse_status(enum_cls, raw, STATUS_ALIASES.get(enum_cls)), raw

    def flags(self) -> Tuple[str, ...]:
        return tuple(self.coerced)


class RecordMixin:
    """Behaviour shared by every fetched entity."""

    COLLECTION: ClassVar[str] = ""
    STATUS_ENUM: ClassVar[Optional[Type[Enum]]] = None

    @property
    def status_key(self) -> str:
        status = getattr(self, "status", None)
        return status.value if status is not None else OTHER_BUCKET

    @property
    def is_flagged(self) -> bool:
        return bool(getattr(self, "coerced_fields", ()))

    def with_status(self, status: Enum):
        return replace(self, status=status, raw_status=status.value)


@dataclass(frozen=True)
class Client(RecordMixin):
    """Client facility"""
    COLLECTION: ClassVar[str] = "clients"
    STATUS_ENUM: ClassVar[Type[Enum]] = ClientStatus

    id: str
    company_name: str = ""
    status: Optional[ClientStatus] = None
    raw_status: str = ""
    industry: str = "OTHER"
    email: str = ""
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Client":
        reader = _FieldReader(payload)
        status, raw = reader.status(ClientStatus, "status")
        return cls(
            id=as_text(reader.first("id", "_id")),
            company_name=as_text(reader.first("companyName", "name")),
            status=status,
            raw_status=raw,
            industry=as_text(reader.first("industry"), "OTHER"),
            email=as_text(reader.first("email")),
            user_id=as_id(reader.first("userId")),
            created_at=parse_datetime(reader.first("createdAt")),
            coerced_fields=reader.flags(),
        )

    @classmethod
    def placeholder(cls, record_id: Optional[str]) -> "Client":
        return cls(id=record_id or "", company_name="Unknown Client", is_placeholder=True)


@dataclass(frozen=True)
class Worker(RecordMixin):
    """Worker profile"""
    COLLECTION: ClassVar[str] = "workers"
    STATUS_ENUM: ClassVar[Type[Enum]] = WorkerStatus

    id: str
    user_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    rating: float = 0.0
    completed_jobs: int = 0
    skills: FrozenSet[str] = frozenset()
    status: Optional[WorkerStatus] = None
    raw_status: str = ""
    created_at: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Worker":
        reader = _FieldReader(payload)
        status, raw = reader.status(WorkerStatus, "status")
        return cls(
            id=as_text(reader.first("id", "_id")),
            user_id=as_id(reader.first("userId")),
            first_name=as_text(reader.first("firstName")),
            last_name=as_text(reader.first("lastName")),
            email=as_text(reader.first("email")),
            rating=reader.rating("rating", "rating", "averageRating"),
            completed_jobs=reader.count("completed_jobs", "completedJobs"),
            skills=frozenset(as_string_tuple(reader.first("skills"))),
            status=status,
            raw_status=raw,
            created_at=parse_datetime(reader.first("createdAt")),
            coerced_fields=reader.flags(),
        )

    @classmethod
    def placeholder(cls, record_id: Optional[str]) -> "Worker":
        return cls(id=record_id or "", first_name="Unknown", last_name="Worker", is_placeholder=True)


@dataclass(frozen=True)
class Job(RecordMixin):
    """Job posting"""
    COLLECTION: ClassVar[str] = "jobs"
    STATUS_ENUM: ClassVar[Type[Enum]] = JobStatus

    id: str
    client_id: Optional[str] = None
    title: str = ""
    status: Optional[JobStatus] = None
    raw_status: str = ""
    salary_min: float = 0.0
    salary_max: float = 0.0
    skills: Tuple[str, ...] = ()
    requirements: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Job":
        reader = _FieldReader(payload)
        status, raw = reader.status(JobStatus, "status")
        salary = reader.first("salary")
        salary = salary if isinstance(salary, Mapping) else {}
        salary_reader = _FieldReader({**salary, **{k: v for k, v in reader.payload.items()
                                                   if k in ("salaryMin", "salaryMax")}})
        salary_min = salary_reader.quantity("salary_min", "salaryMin", "min")
        salary_max = salary_reader.quantity("salary_max", "salaryMax", "max")
        return cls(
            id=as_text(reader.first("id", "_id")),
            client_id=as_id(reader.first("clientId")),
            title=as_text(reader.first("title")),
            status=status,
            raw_status=raw,
            salary_min=salary_min,
            salary_max=salary_max,
            skills=as_string_tuple(reader.first("skills")),
            requirements=as_string_tuple(reader.first("requirements")),
            created_at=parse_datetime(reader.first("createdAt")),
            coerced_fields=reader.flags() + salary_reader.flags(),
        )

    @classmethod
    def placeholder(cls, record_id: Optional[str]) -> "Job":
        return cls(id=record_id or "", title="Unknown Job", is_placeholder=True)


@dataclass(frozen=True)
class Assignment(RecordMixin):
    """Worker placed on a job"""
    COLLECTION: ClassVar[str] = "assignments"
    STATUS_ENUM: ClassVar[Type[Enum]] = AssignmentStatus

    id: str
    job_id: Optional[str] = None
    worker_id: Optional[str] = None
    client_id: Optional[str] = None
    status: Optional[AssignmentStatus] = None
    raw_status: str = ""
    rate: Optional[float] = None
    hourly_rate: Optional[float] = None
    hours_per_week: float = 0.0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @property
    def effective_rate(self) -> float:
        return first_positive(self.rate, self.hourly_rate)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Assignment":
        reader = _FieldReader(payload)
        status, raw = reader.status(AssignmentStatus, "status")
        return cls(
            id=as_text(reader.first("id", "_id")),
            job_id=as_id(reader.first("jobId")),
            worker_id=as_id(reader.first("workerId")),
            client_id=as_id(reader.first("clientId")),
            status=status,
            raw_status=raw,
            rate=reader.optional_quantity("rate", "rate"),
            hourly_rate=reader.optional_quantity("hourly_rate", "hourlyRate"),
            hours_per_week=reader.quantity("hours_per_week", "hoursPerWeek"),
            start_date=parse_datetime(reader.first("startDate")),
            end_date=parse_datetime(reader.first("endDate")),
            coerced_fields=reader.flags(),
        )

    @classmethod
    def placeholder(cls, record_id: Optional[str]) -> "Assignment":
        return cls(id=record_id or "", is_placeholder=True)


@dataclass(frozen=True)
class Timesheet(RecordMixin):
    """Weekly (or daily) hours submitted against an assignment"""
    COLLECTION: ClassVar[str] = "timesheets"
    STATUS_ENUM: ClassVar[Type[Enum]] = TimesheetStatus

    id: str
    assignment_id: Optional[str] = None
    worker_id: Optional[str] = None
    client_id: Optional[str] = None
    job_id: Optional[str] = None
    week_starting: Optional[datetime] = None
    total_hours: float = 0.0
    rate: Optional[float] = None
    status: Optional[TimesheetStatus] = None
    raw_status: str = ""
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Timesheet":
        reader = _FieldReader(payload)
        status, raw = reader.status(TimesheetStatus, "status")
        return cls(
            id=as_text(reader.first("id", "_id")),
            assignment_id=as_id(reader.first("assignmentId")),
            worker_id=as_id(reader.first("workerId")),
            client_id=as_id(reader.first("clientId")),
            job_id=as_id(reader.first("jobId")),
            week_starting=parse_datetime(reader.first("weekStarting", "date")),
            total_hours=reader.quantity("total_hours", "totalHours"),
            rate=reader.optional_quantity("rate", "rate"),
            status=status,
            raw_status=raw,
            coerced_fields=reader.flags(),
        )


@dataclass(frozen=True)
class Document(RecordMixin):
    """Compliance document held for a worker"""
    COLLECTION: ClassVar[str] = "documents"
    STATUS_ENUM: ClassVar[Type[Enum]] = DocumentStatus

    id: str
    worker_id: Optional[str] = None
    title: str = ""
    category: str = "OTHER"
    status: Optional[DocumentStatus] = None
    raw_status: str = ""
    expiry_date: Optional[datetime] = None
    uploaded_at: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Document":
        reader = _FieldReader(payload)
        status, raw = reader.status(DocumentStatus, "status")
        return cls(
            id=as_text(reader.first("id", "_id")),
            worker_id=as_id(reader.first("workerId")),
            title=as_text(reader.first("title", "name")),
            category=as_text(reader.first("category"), "OTHER").upper(),
            status=status,
            raw_status=raw,
            expiry_date=parse_datetime(reader.first("expiryDate")),
            uploaded_at=parse_datetime(reader.first("uploadedAt", "createdAt")),
            coerced_fields=reader.flags(),
        )


@dataclass(frozen=True)
class Payment(RecordMixin):
    """Payroll payment to a worker"""
    COLLECTION: ClassVar[str] = "payments"
    STATUS_ENUM: ClassVar[Type[Enum]] = PaymentStatus

    id: str
    worker_id: Optional[str] = None
    amount: float = 0.0
    net_amount: float = 0.0
    hours: float = 0.0
    rate: Optional[float] = None
    status: Optional[PaymentStatus] = None
    raw_status: str = ""
    created_at: Optional[datetime] = None
    payment_date: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @property
    def effective_date(self) -> Optional[datetime]:
        return self.payment_date or self.created_at

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Payment":
        reader = _FieldReader(payload)
        status, raw = reader.status(PaymentStatus, "status")
        return cls(
            id=as_text(reader.first("id", "_id")),
            worker_id=as_id(reader.first("workerId")),
            amount=reader.quantity("amount", "amount"),
            net_amount=reader.quantity("net_amount", "netAmount"),
            hours=reader.quantity("hours", "hours"),
            rate=reader.optional_quantity("rate", "rate"),
            status=status,
            raw_status=raw,
            created_at=parse_datetime(reader.first("createdAt")),
            payment_date=parse_datetime(reader.first("paymentDate", "processedAt")),
            coerced_fields=reader.flags(),
        )


@dataclass(frozen=True)
class Referral(RecordMixin):
    """Referral made by a worker"""
    COLLECTION: ClassVar[str] = "referrals"
    STATUS_ENUM: ClassVar[Type[Enum]] = ReferralStatus

    id: str
    referrer_id: Optional[str] = None
    referred_name: str = ""
    status: Optional[ReferralStatus] = None
    raw_status: str = ""
    bonus_amount: float = 0.0
    bonus_status: Optional[BonusStatus] = None
    created_at: Optional[datetime] = None
    coerced_fields: Tuple[str, ...] = ()
    is_placeholder: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Referral":
        reader = _FieldReader(payload)
        status, raw = reader.status(ReferralStatus, "status")
        bonus_status, _ = reader.status(BonusStatus, "bonusStatus")
        return cls(
            id=as_text(reader.first("id", "_id")),
            referrer_id=as_id(reader.first("referrerId")),
            referred_name=as_text(reader.first("referredName")),
            status=status,
            raw_status=raw,
            bonus_amount=reader.quantity("bonus_amount", "bonusAmount"),
            bonus_status=bonus_status,
            created_at=parse_datetime(reader.first("createdAt")),
            coerced_fields=reader.flags(),
        )


ENTITY_TYPES: Dict[str, Type[RecordMixin]] = {
    entity.COLLECTION: entity
    for entity in (Client, Worker, Job, Assignment, Timesheet, Document, Payment, Referral)
}


def first_positive(*values: Optional[float]) -> float:
    """First value that is present and above zero, else 0.0."""
    for value in values:
        if value is not None and value > 0:
            return float(value)
    return 0.0


@dataclass(frozen=True)
class CollectionResult:
    """Outcome of fetching one collection.

    ``ok`` distinguishes "fetched, possibly empty" from "failed, substituted
    with nothing"; ``partial`` marks a fan-out result where some sub-requests
    failed.
    """
    name: str
    records: Tuple[Any, ...] = ()
    ok: bool = True
    error: Optional[str] = None
    total: Optional[int] = None
    truncated: bool = False
    partial: bool = False
    failed_keys: Tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return not self.ok or self.partial

    @classmethod
    def success(cls, name: str, records, total: Optional[int] = None,
                truncated: bool = False) -> "CollectionResult":
        return cls(name=name, records=tuple(records), total=total, truncated=truncated)

    @classmethod
    def failure(cls, name: str, error: str) -> "CollectionResult":
        return cls(name=name, records=(), ok=False, error=error)

    def with_records(self, records) -> "CollectionResult":
        return replace(self, records=tuple(records))

    def warning(self) -> Optional[str]:
        if not self.ok:
            return f"{self.name}: unavailable ({self.error})"
        if self.partial:
            return f"{self.name}: {len(self.failed_keys)} sub-request(s) failed"
        if self.truncated:
            return f"{self.name}: truncated at {len(self.records)} of {self.total} records"
        return None


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time set of fetched collections"""
    generation: int
    fetched_at: datetime
    collections: Mapping[str, CollectionResult] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "collections", MappingProxyType(dict(self.collections)))

    def get(self, name: str) -> Optional[CollectionResult]:
        return self.collections.get(name)

    def records(self, name: str) -> Tuple[Any, ...]:
        result = self.collections.get(name)
        return result.records if result is not None else ()

    @property
    def degraded_collections(self) -> Tuple[str, ...]:
        return tuple(name for name, result in self.collections.items() if result.degraded)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_collections)

    @property
    def warnings(self) -> List[str]:
        return [w for w in (r.warning() for r in self.collections.values()) if w]

    def replace_collection(self, result: CollectionResult) -> "Snapshot":
        collections = dict(self.collections)
        collections[result.name] = result
        return Snapshot(generation=self.generation, fetched_at=self.fetched_at,
                        collections=collections)


@dataclass(frozen=True)
class JoinedRecord:
    """A record with its foreign keys resolved to inline copies.

    Attribute access falls through to the related records first, then to the
    underlying record, so ``joined.worker.full_name`` and ``joined.status``
    both work.
    """
    record: Any
    related: Mapping[str, Any] = field(default_factory=dict)
    missing: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "related", MappingProxyType(dict(self.related)))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        related = self.__dict__.get("related") or {}
        if name in related:
            return related[name]
        record = self.__dict__.get("record")
        if record is None:
            raise AttributeError(name)
        return getattr(record, name)

    @property
    def has_gaps(self) -> bool:
        return bool(self.missing)


@dataclass(frozen=True)
class StatusCounts:
    """Partition of a collection by status, with a catch-all bucket"""
    buckets: Mapping[str, int]
    total: int

    def __post_init__(self):
        object.__setattr__(self, "buckets", MappingProxyType(dict(self.buckets)))

    def __getitem__(self, key: str) -> int:
        return self.buckets.get(key, 0)

    @property
    def is_consistent(self) -> bool:
        return sum(self.buckets.values()) == self.total

    def to_dict(self) -> Dict[str, int]:
        return {**self.buckets, "total": self.total}


@dataclass(frozen=True)
class PeriodBucket:
    """Records grouped under one period key"""
    period: str
    count: int
    total: float


@dataclass(frozen=True)
class ExpiryBreakdown:
    """Partition of dated records by distance to expiry"""
    overdue: int = 0
    expires_now: int = 0
    expiring_soon: int = 0
    due_for_renewal: int = 0
    up_to_date: int = 0
    no_expiry: int = 0

    @property
    def total(self) -> int:
        return (self.overdue + self.expires_now + self.expiring_soon
                + self.due_for_renewal + self.up_to_date + self.no_expiry)


@dataclass(frozen=True)
class ViewState:
    """A snapshot plus everything derived from it at one instant"""
    view: str
    snapshot: Snapshot
    derived: Mapping[str, Any] = field(default_factory=dict)
    as_of: Optional[datetime] = None
    owner_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "derived", MappingProxyType(dict(self.derived)))

    @property
    def generation(self) -> int:
        return self.snapshot.generation

    def value(self, name: str, default: Any = None) -> Any:
        if name in self.derived:
            return self.derived[name]
        result = self.snapshot.get(name)
        if result is not None:
            return result.records
        return default


@dataclass(frozen=True)
class MutationIntent:
    """A status transition the user has asked for"""
    collection: str
    record_id: str
    action: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PendingMutation:
    """Token needed to undo an optimistic mutation"""
    intent: MutationIntent
    previous: Any
    applied: Any


@dataclass(frozen=True)
class MutationResult:
    """Outcome of reconciling one mutation"""
    ok: bool
    state: ViewState
    pending: Optional[PendingMutation] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    recomputed: Tuple[str, ...] = ()
    rolled_back: bool = False


@dataclass(frozen=True)
class GatewayResponse:
    """Uniform ``{success, data, error}`` envelope returned by every gateway call"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    status: Optional[int] = None

    @classmethod
    def ok(cls, data: Any = None, status: int = 200) -> "GatewayResponse":
        return cls(success=True, data=data, status=status)

    @classmethod
    def fail(cls, error: str, status: Optional[int] = None) -> "GatewayResponse":
        return cls(success=False, error=error, status=status)
