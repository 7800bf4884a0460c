"""
Data structures for the CMMC tracker.

Every persisted entity is a dataclass deriving from ``Record`` which
carries the ``id``/``created_at``/``updated_at`` triple. Records convert
to and from plain JSON-ready dictionaries: datetimes are written as
ISO-8601 strings and re-hydrated on load, unknown keys are ignored and
camelCase keys (as exported by older clients) are accepted.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, fields, asdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from dateutil.parser import isoparse

from cmmc_tracker import risk_scoring

R = TypeVar("R", bound="Serializable")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str = "") -> str:
    """Generate a short unique identifier, optionally prefixed."""
    token = uuid.uuid4().hex[:12]
    return f"{prefix}_{token}" if prefix else token


def stamp(record: "Record", existing: Optional["Record"] = None) -> "Record":
    """Set timestamps for an upsert.

    ``created_at`` is taken from ``existing`` when there is one and is
    otherwise set to now. ``updated_at`` always moves forward, even when
    two saves land within the same clock tick.
    """
    now = utcnow()
    previous = existing.updated_at if existing is not None else record.updated_at
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    if existing is not None and existing.created_at is not None:
        record.created_at = existing.created_at
    elif record.created_at is None:
        record.created_at = now
    record.updated_at = now
    return record


def to_snake_case(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored date value into an aware ``datetime``.

    Accepts ISO-8601 strings, ``date`` and ``datetime`` objects. Naive
    values are taken to be UTC. Empty values become ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        result = isoparse(value)
    else:
        raise ValueError(f"Unsupported date value: {value!r}")
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def to_json_ready(value: Any) -> Any:
    """Recursively convert datetimes to ISO strings."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_ready(v) for v in value]
    return value


class Serializable:
    """Mixin giving dataclasses dictionary conversion.

    Subclasses list their datetime fields in ``DATE_FIELDS`` and nested
    dataclass fields in ``NESTED`` (field name -> class). A nested field
    holding a list is converted element-wise.
    """

    DATE_FIELDS: tuple = ()
    NESTED: Dict[str, type] = {}

    def to_dict(self) -> Dict[str, Any]:
        return to_json_ready(asdict(self))

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} expects a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for raw_key, value in data.items():
            key = raw_key if raw_key in known else to_snake_case(raw_key)
            if key not in known:
                continue
            if key in cls.DATE_FIELDS:
                value = parse_datetime(value)
            elif key in cls.NESTED and value is not None:
                nested_cls = cls.NESTED[key]
                if isinstance(value, list):
                    value = [v if isinstance(v, nested_cls) else nested_cls.from_dict(v) for v in value]
                elif not isinstance(value, nested_cls):
                    value = nested_cls.from_dict(value)
            kwargs[key] = value
        return cls(**kwargs)


@dataclass
class Record(Serializable):
    """Base entity: unique id plus creation/modification timestamps."""
    id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    DATE_FIELDS = ("created_at", "updated_at")


@dataclass
class Asset(Record):
    """An in-scope system asset (hardware, software, data, people, facility)."""
    name: str = ""
    description: str = ""
    type: str = "hardware"
    category: str = ""
    owner: str = ""
    location: str = ""
    # CUI / FCI / internal / public
    classification: str = "internal"
    criticality: str = "medium"
    status: str = "active"
    in_cmmc_scope: bool = True
    tags: List[str] = field(default_factory=list)


@dataclass
class Assessment(Record):
    """A CMMC self-assessment run against a set of assets."""
    name: str = ""
    description: str = ""
    framework: str = "CMMC 2.0"
    level: int = 1
    status: str = "planned"
    score: float = 0.0
    assessor: str = ""
    asset_ids: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    DATE_FIELDS = Record.DATE_FIELDS + ("completed_at",)


@dataclass
class Control(Record):
    name: str = ""
    description: str = ""
    # Practice identifier, e.g. AC.1.001
    control_id: str = ""
    category: str = ""
    subcategory: str = ""
    framework: str = "CMMC Level 1"
    status: str = "not-implemented"
    priority: str = "medium"
    owner: str = ""
    assigned_to: str = ""
    risk_level: str = "medium"
    business_impact: str = "medium"
    last_reviewed: Optional[datetime] = None
    next_review: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    evidence: List[str] = field(default_factory=list)
    related_controls: List[str] = field(default_factory=list)
    implementation_guidance: str = ""
    tags: List[str] = field(default_factory=list)
    notes: str = ""

    DATE_FIELDS = Record.DATE_FIELDS + ("last_reviewed", "next_review", "completion_date")


@dataclass
class Policy(Record):
    name: str = ""
    description: str = ""
    type: str = "governance"
    status: str = "draft"
    version: str = "1.0"
    owner: str = ""
    framework: str = "CMMC Level 1"
    nist_function: str = "govern"
    risk_level: str = "medium"
    business_impact: str = "medium"
    content: str = ""
    effective_date: Optional[datetime] = None
    last_reviewed: Optional[datetime] = None
    next_review: Optional[datetime] = None
    review_cycle: str = "annually"
    stakeholders: List[str] = field(default_factory=list)
    compliance_requirements: List[str] = field(default_factory=list)
    related_controls: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    DATE_FIELDS = Record.DATE_FIELDS + ("effective_date", "last_reviewed", "next_review")


@dataclass
class EvidenceItem(Record):
    name: str = ""
    description: str = ""
    type: str = "document"
    category: str = ""
    control_id: str = ""
    status: str = "draft"
    uploaded_by: str = ""
    upload_date: Optional[datetime] = None
    # bytes
    file_size: Optional[int] = None
    compliance_status: str = "not-assessed"
    risk_level: str = "low"
    framework: str = "CMMC 2.0"
    reviewed_by: str = ""
    review_date: Optional[datetime] = None
    review_notes: str = ""
    retention_date: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)

    DATE_FIELDS = Record.DATE_FIELDS + ("upload_date", "review_date", "retention_date")


@dataclass
class TeamMember(Record):
    name: str = ""
    email: str = ""
    role: str = "contributor"
    department: str = ""
    organization: str = ""
    status: str = "active"
    join_date: Optional[datetime] = None
    skills: List[str] = field(default_factory=list)
    responsibilities: List[str] = field(default_factory=list)
    # 0-100 performance metrics
    collaboration_score: float = 0.0
    compliance_score: float = 0.0
    notifications: List[Dict[str, Any]] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    DATE_FIELDS = Record.DATE_FIELDS + ("join_date",)


@dataclass
class TeamTask(Record):
    title: str = ""
    description: str = ""
    type: str = "control-implementation"
    priority: str = "medium"
    status: str = "not-started"
    assigned_to: List[str] = field(default_factory=list)
    created_by: str = ""
    due_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    progress: int = 0
    related_control: str = ""
    related_policy: str = ""
    estimated_hours: float = 0.0
    actual_hours: float = 0.0
    tags: List[str] = field(default_factory=list)

    DATE_FIELDS = Record.DATE_FIELDS + ("due_date", "completed_date")


@dataclass
class TeamMeeting(Record):
    title: str = ""
    description: str = ""
    type: str = "review"
    attendees: List[str] = field(default_factory=list)
    organizer: str = ""
    scheduled_date: Optional[datetime] = None
    duration: int = 60  # minutes
    location: str = ""
    agenda: List[str] = field(default_factory=list)
    notes: str = ""
    action_items: List[str] = field(default_factory=list)
    status: str = "scheduled"

    DATE_FIELDS = Record.DATE_FIELDS + ("scheduled_date",)


@dataclass
class Recurrence(Serializable):
    """Repeat rule for calendar events."""
    frequency: str = "weekly"  # daily / weekly / monthly / yearly
    interval: int = 1
    end_date: Optional[datetime] = None
    occurrences: Optional[int] = None
    # 0 = Monday
    days_of_week: List[int] = field(default_factory=list)

    DATE_FIELDS = ("end_date",)


@dataclass
class CalendarEvent(Record):
    title: str = ""
    description: str = ""
    type: str = "meeting"
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    is_all_day: bool = False
    priority: str = "medium"
    status: str = "scheduled"
    assigned_to: List[str] = field(default_factory=list)
    created_by: str = ""
    location: str = ""
    attendees: List[str] = field(default_factory=list)
    related_control_id: str = ""
    related_assessment_id: str = ""
    recurrence: Optional[Recurrence] = None
    parent_event_id: str = ""
    notes: str = ""
    tags: List[str] = field(default_factory=list)

    DATE_FIELDS = Record.DATE_FIELDS + ("start", "end")
    NESTED = {"recurrence": Recurrence}

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None


@dataclass
class Risk(Record):
    title: str = ""
    description: str = ""
    category: str = ""
    likelihood: str = "medium"
    impact: str = "medium"
    risk_score: int = 9
    residual_risk: str = "medium"
    status: str = "identified"
    owner: str = ""
    mitigation: str = ""
    controls: List[str] = field(default_factory=list)
    cmmc_practices: List[str] = field(default_factory=list)

    def __post_init__(self):
        # Score and level always follow likelihood and impact
        self.risk_score, self.residual_risk = risk_scoring.assess(self.likelihood, self.impact)


@dataclass
class Threat(Record):
    title: str = ""
    description: str = ""
    # STRIDE category
    category: str = "tampering"
    attack_vector: str = ""
    likelihood: str = "medium"
    impact: str = "medium"
    risk_score: int = 9
    risk_level: str = "medium"
    status: str = "identified"
    owner: str = ""
    controls: List[str] = field(default_factory=list)
    cmmc_practices: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.risk_score, self.risk_level = risk_scoring.assess(self.likelihood, self.impact)


@dataclass
class RiskAssessment(Record):
    title: str = ""
    description: str = ""
    status: str = "draft"
    risks: List[Risk] = field(default_factory=list)
    overall_risk_level: str = "low"
    assessor: str = ""
    reviewer: str = ""
    framework: str = "CMMC 2.0"
    version: str = "1.0"
    assessment_date: Optional[datetime] = None

    DATE_FIELDS = Record.DATE_FIELDS + ("assessment_date",)
    NESTED = {"risks": Risk}

    def __post_init__(self):
        self.overall_risk_level = risk_scoring.overall_risk_level(r.risk_score for r in self.risks)


@dataclass
class ThreatModel(Record):
    title: str = ""
    description: str = ""
    system_name: str = ""
    methodology: str = "STRIDE"
    threats: List[Threat] = field(default_factory=list)
    overall_risk_level: str = "low"
    status: str = "draft"
    version: str = "1.0"

    NESTED = {"threats": Threat}

    def __post_init__(self):
        self.overall_risk_level = risk_scoring.overall_risk_level(t.risk_score for t in self.threats)


@dataclass
class DateRange(Serializable):
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    DATE_FIELDS = ("start", "end")


@dataclass
class ReportData(Record):
    title: str = ""
    description: str = ""
    type: str = "compliance"
    framework: str = "CMMC 2.0"
    status: str = "draft"
    sections: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    date_range: Optional[DateRange] = None
    generated_by: str = ""
    generated_at: Optional[datetime] = None
    error: Optional[str] = None
    download_count: int = 0
    tags: List[str] = field(default_factory=list)

    DATE_FIELDS = Record.DATE_FIELDS + ("generated_at",)
    NESTED = {"date_range": DateRange}


# Collection name -> record class. Names match the persisted keys.
COLLECTION_MODELS: Dict[str, Type[Record]] = {
    "assets": Asset,
    "assessments": Assessment,
    "controls": Control,
    "policies": Policy,
    "evidence": EvidenceItem,
    "calendarEvents": CalendarEvent,
    "reports": ReportData,
    "teamMembers": TeamMember,
    "teamTasks": TeamTask,
    "teamMeetings": TeamMeeting,
    "riskAssessments": RiskAssessment,
    "threatModels": ThreatModel,
}

# Mapping-valued entries that sit beside the collections
SETTINGS_KEY = "settings"
PROFILE_KEY = "userProfile"
PROFILE_KEYS = (SETTINGS_KEY, PROFILE_KEY)
