"""
Appointment update rules.

``apply_patch`` turns a requested change into the exact fields to persist.
Moving an appointment to another date or start time sends it back to
``pending`` so the client confirms the new time, unless the same request
sets a status explicitly.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Union

from .exceptions import ValidationError
from .models import Appointment, AppointmentStatus, parse_status, parse_type
from .time_model import (
    WallClockDate,
    WallClockInstant,
    WallClockTime,
    combine,
    is_in_past,
    normalize_time,
    now_wall_clock,
    parse_local_date,
)


class _Unset:
    """Marker for a field the patch leaves untouched."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

RESCHEDULE_FIELDS = ("date", "start_time")


@dataclass(frozen=True)
class AppointmentPatch:
    """
    Requested changes to an appointment.

    Fields left as ``UNSET`` are not touched; ``notes=None`` clears the notes.
    """
    date: Union[WallClockDate, Any] = UNSET
    start_time: Union[WallClockTime, Any] = UNSET
    end_time: Union[WallClockTime, Any] = UNSET
    status: Union[AppointmentStatus, Any] = UNSET
    type: Any = UNSET
    notes: Union[Optional[str], Any] = UNSET
    client_id: Union[Optional[str], Any] = UNSET

    @classmethod
    def from_mapping(cls, changes: Mapping[str, Any]) -> "AppointmentPatch":
        """
        Build a patch from raw request values, e.g.
        ``{"date": "2025-09-25", "start_time": "14:00"}``.

        Raises:
            ParseError: If a date or time string is malformed.
            ValidationError: On unknown fields, statuses or types.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValidationError(f"Unknown appointment field(s): {', '.join(unknown)}")

        parsed: Dict[str, Any] = {}
        for name, value in changes.items():
            if name == "date" and isinstance(value, str):
                value = parse_local_date(value)
            elif name in ("start_time", "end_time") and isinstance(value, str):
                value = normalize_time(value)
            elif name == "status":
                value = parse_status(value)
            elif name == "type":
                value = parse_type(value)
            parsed[name] = value
        return cls(**parsed)

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly set by the patch."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


@dataclass(frozen=True)
class PatchResult:
    """Fields to persist and whether the update moved the appointment."""
    fields: Dict[str, Any] = field(default_factory=dict)
    rescheduled: bool = False

    def apply_to(self, existing: Appointment) -> Appointment:
        return existing.replace(**self.fields)


def is_reschedule(existing: Appointment, patch: AppointmentPatch) -> bool:
    """A reschedule changes the date and/or the start time."""
    return any(
        getattr(patch, name) is not UNSET and getattr(patch, name) != getattr(existing, name)
        for name in RESCHEDULE_FIELDS
    )


def apply_patch(
    existing: Appointment,
    patch: Union[AppointmentPatch, Mapping[str, Any]],
    *,
    now: Optional[WallClockInstant] = None,
) -> PatchResult:
    """
    Compute the fields an update should persist.

    Rules:
    - A reschedule without an explicit status resets the status to pending
    - An explicit status always wins, even alongside a reschedule
    - Other edits never touch the status

    Args:
        existing: Appointment as currently stored
        patch: Requested changes
        now: Current shop-local wall-clock time; read from the process
            clock when omitted

    Returns:
        PatchResult with only the fields to write

    Raises:
        ValidationError: If the resulting end time is not after the start
            time, or a moved appointment would start in the past and is
            not being canceled
    """
    if isinstance(patch, Mapping):
        patch = AppointmentPatch.from_mapping(patch)

    changes = patch.changes()
    if "status" in changes:
        changes["status"] = parse_status(changes["status"])
    if "type" in changes:
        changes["type"] = parse_type(changes["type"])

    rescheduled = is_reschedule(existing, patch)
    if rescheduled and "status" not in changes:
        changes["status"] = AppointmentStatus.PENDING

    date = changes.get("date", existing.date)
    start_time = changes.get("start_time", existing.start_time)
    end_time = changes.get("end_time", existing.end_time)
    status = changes.get("status", existing.status)

    if end_time <= start_time:
        raise ValidationError(f"End time {end_time} must be after start time {start_time}")

    if rescheduled and status is not AppointmentStatus.CANCELED:
        now = now or now_wall_clock()
        if is_in_past(combine(date, start_time), now):
            raise ValidationError(f"Cannot schedule an appointment in the past ({date} {start_time})")

    return PatchResult(fields=changes, rescheduled=rescheduled)
