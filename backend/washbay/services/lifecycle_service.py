# Overview: Lifecycle catalog; resolves the ordered stage list that governs a job card.

"""
WashBay Lifecycle Catalog

================================================================================
PURPOSE: Decide, for one job, which ordered list of stages its state machine
walks through.
================================================================================

DEFAULT PIPELINE:
    check_in -> pre_wash -> foam_wash -> interior -> polishing -> qc
             -> completed -> delivered

RESOLUTION RULES:
1. Walk the job's services in the order they were attached.
2. Match each entry by id against the tenant's Service catalog.
3. The first matched service with a non-empty, well-formed lifecycle_stages
   list wins; its list is used verbatim.
4. Otherwise the default pipeline applies.

Stage identifiers are opaque, case-sensitive strings. Only their order means
anything here. Two names are special elsewhere:
- "completed" gates invoice generation and maps the booking to completed
- "delivered" maps the booking to completed
(see booking_service.derive_booking_status and invoice_service).

A stored stage that is missing from the effective list (the catalog was edited
after the job started) has index -1, the same as "not started".
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from ..extensions import db
from ..models import Service
from ..validation import ValidationError


DEFAULT_LIFECYCLE_STAGES: tuple[str, ...] = (
    "check_in",
    "pre_wash",
    "foam_wash",
    "interior",
    "polishing",
    "qc",
    "completed",
    "delivered",
)

STAGE_COMPLETED = "completed"
STAGE_DELIVERED = "delivered"

# Index of the implicit pre-state (job card exists, not checked in yet)
NOT_STARTED = -1

MAX_STAGE_NAME_LENGTH = 64


class LifecycleError(ValueError):
    """
    Raised when a job card operation violates the lifecycle rules.

    This is a domain error, not a technical error.
    """
    pass


class InvalidStage(LifecycleError):
    """The requested stage is not a member of the job's effective stage list."""
    pass


class InvalidTransition(LifecycleError):
    """
    The requested move is not allowed from the job's current stage.

    Also raised when a concurrent writer changed the stage first; the caller
    must re-fetch the job card before retrying.
    """
    pass


def is_well_formed_stage_list(value: Any) -> bool:
    """Non-empty list of non-empty, unique strings."""
    if not isinstance(value, (list, tuple)) or not value:
        return False
    if not all(isinstance(s, str) and s.strip() and len(s) <= MAX_STAGE_NAME_LENGTH for s in value):
        return False
    return len(set(value)) == len(value)


def validate_stage_list(value: Any) -> list[str] | None:
    """
    Validate lifecycle_stages for a catalog write.

    None or [] clears the override (the default pipeline applies).
    """
    if value is None or value == []:
        return None
    if not isinstance(value, list):
        raise ValidationError("lifecycle_stages must be a list of stage names")
    if not is_well_formed_stage_list(value):
        raise ValidationError(
            "lifecycle_stages must contain unique, non-empty stage names "
            f"of at most {MAX_STAGE_NAME_LENGTH} characters"
        )
    return list(value)


@dataclass(frozen=True)
class EffectiveStages:
    """The resolved, ordered stage list for one job."""
    names: tuple[str, ...]
    source_service_id: int | None = None

    def __post_init__(self):
        if not self.names:
            raise ValueError("An effective stage list cannot be empty")

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, stage: object) -> bool:
        return stage in self.names

    @property
    def is_default(self) -> bool:
        return self.source_service_id is None

    @property
    def first(self) -> str:
        return self.names[0]

    @property
    def last(self) -> str:
        return self.names[-1]

    @property
    def last_index(self) -> int:
        return len(self.names) - 1

    def index_of(self, stage: str | None) -> int:
        """Zero-based position, or NOT_STARTED for None / unknown stages."""
        if stage is None:
            return NOT_STARTED
        try:
            return self.names.index(stage)
        except ValueError:
            return NOT_STARTED

    def stage(self, name: str) -> "Stage":
        """Build a validated Stage, rejecting names outside this list."""
        if name not in self.names:
            raise InvalidStage(
                f"Stage '{name}' is not one of: {', '.join(self.names)}"
            )
        return Stage(name=name, index=self.names.index(name), stages=self)

    def next_after(self, stage: str | None) -> str | None:
        """The only stage an ordinary advance may enter, or None at the end."""
        index = self.index_of(stage)
        if index >= self.last_index:
            return None
        return self.names[index + 1]

    @property
    def invoice_gate_index(self) -> int:
        """Position from which a job may be invoiced: "completed" if listed, else the last stage."""
        if STAGE_COMPLETED in self.names:
            return self.names.index(STAGE_COMPLETED)
        return self.last_index

    def to_dict(self) -> dict:
        return {
            "stages": list(self.names),
            "source_service_id": self.source_service_id,
            "is_default": self.is_default,
        }


@dataclass(frozen=True)
class Stage:
    """A stage name bound to the list it was validated against."""
    name: str
    index: int
    stages: EffectiveStages

    @property
    def is_first(self) -> bool:
        return self.index == 0

    @property
    def is_last(self) -> bool:
        return self.index == self.stages.last_index

    def __str__(self) -> str:
        return self.name


DEFAULT_STAGES = EffectiveStages(DEFAULT_LIFECYCLE_STAGES)


def _entry_service_id(entry: Any) -> int | None:
    if not isinstance(entry, dict) or entry.get("id") is None:
        return None
    try:
        return int(entry["id"])
    except (TypeError, ValueError):
        return None


def resolve_effective_stages(org_id: int, services: Iterable[dict] | None) -> EffectiveStages:
    """
    Resolve the stage list for a job from its attached services.

    Inactive catalog entries still count: deactivating a service must not
    change the pipeline of jobs already using it.
    """
    entries = list(services or [])
    ids = [sid for sid in (_entry_service_id(e) for e in entries) if sid is not None]
    if not ids:
        return DEFAULT_STAGES

    catalog = {
        svc.id: svc
        for svc in db.session.query(Service).filter(
            Service.org_id == org_id,
            Service.id.in_(ids),
        ).all()
    }

    for service_id in ids:
        svc = catalog.get(service_id)
        if svc is not None and is_well_formed_stage_list(svc.lifecycle_stages):
            return EffectiveStages(tuple(svc.lifecycle_stages), source_service_id=svc.id)

    return DEFAULT_STAGES


def stages_for_job(job_card) -> EffectiveStages:
    return resolve_effective_stages(job_card.org_id, job_card.services)


def is_invoice_eligible(stage: str | None, stages: EffectiveStages) -> bool:
    index = stages.index_of(stage)
    return index != NOT_STARTED and index >= stages.invoice_gate_index
