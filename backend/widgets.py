"""
Mode-gated list stores behind the dashboard widgets.

Every widget (notes, to-dos, journal, calendar, medications, voice recordings)
follows the same pattern: an ordered list of records, a handful of mutations,
a sorted or filtered view for rendering, and a patient/family switch deciding
which of those mutations the user may trigger. The pattern is written once
here; each widget is a ``WidgetKind`` describing its record model, required
fields, view rule and mode policy.

A ``Store`` is a value. ``create``/``update``/``delete``/``toggle`` return a
``Mutation`` carrying the new store, the touched record and the confirmation
message to show; the store the call was made on is left as it was.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from operator import attrgetter
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Type

from pydantic import ValidationError as PydanticValidationError

from entities import (
    CalendarEvent,
    JournalEntry,
    Medication,
    Note,
    TodoItem,
    VoiceRecording,
    WidgetRecord,
    as_day,
    normalize_hhmm,
    utc_now,
)

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    PATIENT = "patient"
    FAMILY = "family"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TOGGLE = "toggle"


class WidgetError(Exception):
    pass


class ValidationFailed(WidgetError):
    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class InvalidFormat(ValidationFailed):
    pass


class NotFound(WidgetError):
    pass


class UnknownWidget(LookupError):
    pass


# ==================== HELPERS ====================

def new_record_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def check_medication_time(values: dict) -> dict:
    normalized = normalize_hhmm(values.get("time", ""))
    if normalized is None:
        raise InvalidFormat("Invalid time format. Use HH:mm.", fields=["time"])
    return {**values, "time": normalized}


def reset_stale_dose(record: Medication, today: date) -> Medication:
    if record.taken_today and record.last_taken_date != today:
        return record.model_copy(update={"taken_today": False})
    return record


# ==================== VIEWS ====================

def insertion_order(records: Tuple[WidgetRecord, ...], selected_day: Optional[date]) -> List[WidgetRecord]:
    return list(records)


def newest_first(field_name: str) -> Callable:
    key = attrgetter(field_name)

    def view(records, selected_day):
        return sorted(records, key=key, reverse=True)

    return view


def by_time_of_day(records, selected_day):
    # HH:MM is zero padded, so string order is clock order.
    return sorted(records, key=attrgetter("time"))


def on_selected_day(records, selected_day):
    day = as_day(selected_day) if selected_day is not None else date.today()
    return [record for record in records if as_day(record.date) == day]


# ==================== WIDGET KINDS ====================

FAMILY_ALL = frozenset({Operation.CREATE, Operation.UPDATE, Operation.DELETE, Operation.TOGGLE})


@dataclass(frozen=True)
class WidgetKind:
    name: str
    label: str
    model: Type[WidgetRecord]
    id_prefix: str
    fields: Tuple[str, ...]
    required: Tuple[str, ...]
    policy: Dict[Mode, FrozenSet[Operation]]
    messages: Dict[str, str]
    optional_text: Tuple[str, ...] = ()
    stamp_field: Optional[str] = None
    toggle_field: Optional[str] = None
    toggle_day_field: Optional[str] = None
    view: Callable = insertion_order
    check: Optional[Callable[[dict], dict]] = None
    on_load: Optional[Callable[[Any, date], Any]] = None

    def allows(self, mode: Mode, operation: Operation) -> bool:
        return Operation(operation) in self.policy.get(Mode(mode), frozenset())

    def confirm(self, key: str, record: WidgetRecord) -> str:
        return self.messages[key].format(**dict(record))


NOTES = WidgetKind(
    name="notes",
    label="Note",
    model=Note,
    id_prefix="note",
    fields=("title", "content"),
    required=("title", "content"),
    policy={
        Mode.FAMILY: frozenset({Operation.CREATE, Operation.UPDATE, Operation.DELETE}),
        Mode.PATIENT: frozenset({Operation.CREATE}),
    },
    messages={
        "create": "Note saved.",
        "update": "Note updated.",
        "delete": "Note deleted.",
    },
    stamp_field="last_modified",
    view=newest_first("last_modified"),
)

TODOS = WidgetKind(
    name="todos",
    label="Task",
    model=TodoItem,
    id_prefix="todo",
    fields=("text",),
    required=("text",),
    policy={
        Mode.FAMILY: FAMILY_ALL,
        Mode.PATIENT: frozenset({Operation.TOGGLE}),
    },
    messages={
        "create": "Task added.",
        "update": "Task updated.",
        "delete": "Task deleted.",
        "toggle_on": "Task marked as done.",
        "toggle_off": "Task marked as not done.",
    },
    toggle_field="completed",
)

JOURNAL = WidgetKind(
    name="journal",
    label="Journal entry",
    model=JournalEntry,
    id_prefix="journal",
    fields=("content",),
    required=("content",),
    policy={
        Mode.FAMILY: frozenset({Operation.CREATE, Operation.UPDATE, Operation.DELETE}),
        Mode.PATIENT: frozenset({Operation.CREATE}),
    },
    messages={
        "create": "Journal entry saved.",
        "update": "Journal entry updated.",
        "delete": "Journal entry deleted.",
    },
    stamp_field="date",
    view=newest_first("date"),
)

CALENDAR = WidgetKind(
    name="calendar",
    label="Event",
    model=CalendarEvent,
    id_prefix="event",
    fields=("date", "title", "description"),
    required=("date", "title"),
    optional_text=("description",),
    policy={
        Mode.FAMILY: frozenset({Operation.CREATE, Operation.UPDATE, Operation.DELETE}),
        Mode.PATIENT: frozenset(),
    },
    messages={
        "create": "Added event for {date:%B %d, %Y}.",
        "update": "Event updated.",
        "delete": "Event has been deleted.",
    },
    view=on_selected_day,
)

MEDICATIONS = WidgetKind(
    name="medications",
    label="Medication",
    model=Medication,
    id_prefix="med",
    fields=("name", "dosage", "time"),
    required=("name", "dosage", "time"),
    policy={
        Mode.FAMILY: FAMILY_ALL,
        Mode.PATIENT: frozenset({Operation.TOGGLE}),
    },
    messages={
        "create": "{name} added to your medications.",
        "update": "{name} updated.",
        "delete": "{name} removed from your medications.",
        "toggle_on": "{name} marked as taken.",
        "toggle_off": "{name} marked as not taken.",
    },
    toggle_field="taken_today",
    toggle_day_field="last_taken_date",
    view=by_time_of_day,
    check=check_medication_time,
    on_load=reset_stale_dose,
)

RECORDINGS = WidgetKind(
    name="recordings",
    label="Recording",
    model=VoiceRecording,
    id_prefix="recording",
    fields=("name", "url"),
    required=("name", "url"),
    policy={
        Mode.FAMILY: frozenset({Operation.CREATE, Operation.DELETE}),
        Mode.PATIENT: frozenset(),
    },
    messages={
        "create": "Recording {name} added.",
        "update": "Recording {name} updated.",
        "delete": "Recording {name} deleted.",
    },
)

WIDGET_KINDS: Dict[str, WidgetKind] = {
    kind.name: kind for kind in (NOTES, TODOS, JOURNAL, CALENDAR, MEDICATIONS, RECORDINGS)
}


def get_kind(name: str) -> WidgetKind:
    try:
        return WIDGET_KINDS[name]
    except KeyError:
        raise UnknownWidget(f"Unknown widget: {name}") from None


def can_mutate(kind: WidgetKind, mode: Mode, operation: Operation) -> bool:
    return kind.allows(mode, operation)


# ==================== STORE ====================

@dataclass(frozen=True)
class Mutation:
    store: "Store"
    operation: Operation
    record: Optional[WidgetRecord] = None
    message: Optional[str] = None
    applied: bool = True


@dataclass(frozen=True)
class Store:
    kind: WidgetKind
    records: Tuple[WidgetRecord, ...] = field(default_factory=tuple)

    @classmethod
    def load(cls, kind: WidgetKind, docs: Iterable[Any], today: Optional[date] = None) -> "Store":
        """Build a store from remote documents or seed data.

        Documents that do not validate as the widget's record are logged and
        left out, so one bad document cannot keep the rest from loading.
        """
        today = today or date.today()
        records = []
        for doc in docs:
            try:
                record = doc if isinstance(doc, kind.model) else kind.model.model_validate(doc)
            except PydanticValidationError as exc:
                doc_id = doc.get("id") if isinstance(doc, dict) else None
                logger.warning("Skipping %s document %s: %s", kind.name, doc_id, exc.errors()[0]["msg"])
                continue
            if kind.on_load is not None:
                record = kind.on_load(record, today)
            records.append(record)
        return cls(kind, tuple(records))

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def ids(self) -> List[str]:
        return [record.id for record in self.records]

    def get(self, record_id: str) -> WidgetRecord:
        return self.records[self._index(record_id)]

    def _index(self, record_id: str) -> int:
        for idx, record in enumerate(self.records):
            if record.id == record_id:
                return idx
        raise NotFound(f"{self.kind.label} {record_id} not found")

    def _clean(self, values: dict) -> dict:
        cleaned = {}
        for name in self.kind.fields:
            if name not in values:
                continue
            value = values[name]
            if isinstance(value, str):
                value = value.strip()
            if value == "" and name in self.kind.optional_text:
                value = None
            cleaned[name] = value
        missing = [name for name in self.kind.required if cleaned.get(name) in (None, "")]
        if missing:
            raise ValidationFailed(f"Please fill in: {', '.join(missing)}.", fields=missing)
        if self.kind.check is not None:
            cleaned = self.kind.check(cleaned)
        return cleaned

    def _build(self, values: dict) -> WidgetRecord:
        try:
            return self.kind.model.model_validate(values)
        except PydanticValidationError as exc:
            bad = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
            raise ValidationFailed(f"Invalid value for: {', '.join(bad)}.", fields=bad) from exc

    def _replace(self, idx: int, record: Optional[WidgetRecord]) -> "Store":
        head, tail = self.records[:idx], self.records[idx + 1:]
        middle = (record,) if record is not None else ()
        return Store(self.kind, head + middle + tail)

    def create(self, values: dict, now: Optional[datetime] = None) -> Mutation:
        cleaned = self._clean(values)
        cleaned["id"] = new_record_id(self.kind.id_prefix)
        if self.kind.stamp_field:
            cleaned[self.kind.stamp_field] = now or utc_now()
        record = self._build(cleaned)
        return Mutation(
            store=Store(self.kind, self.records + (record,)),
            operation=Operation.CREATE,
            record=record,
            message=self.kind.confirm("create", record),
        )

    def update(self, record_id: str, values: dict, now: Optional[datetime] = None) -> Mutation:
        idx = self._index(record_id)
        existing = self.records[idx]
        partial = {k: v for k, v in values.items() if v is not None}
        merged_input = {name: getattr(existing, name) for name in self.kind.fields}
        merged_input.update(partial)
        cleaned = self._clean(merged_input)
        merged = {**existing.model_dump(), **cleaned, "id": existing.id}
        if self.kind.stamp_field:
            merged[self.kind.stamp_field] = now or utc_now()
        record = self._build(merged)
        return Mutation(
            store=self._replace(idx, record),
            operation=Operation.UPDATE,
            record=record,
            message=self.kind.confirm("update", record),
        )

    def delete(self, record_id: str) -> Mutation:
        idx = self._index(record_id)
        removed = self.records[idx]
        return Mutation(
            store=self._replace(idx, None),
            operation=Operation.DELETE,
            record=removed,
            message=self.kind.confirm("delete", removed),
        )

    def toggle(self, record_id: str, today: Optional[date] = None) -> Mutation:
        flag = self.kind.toggle_field
        if flag is None:
            raise WidgetError(f"{self.kind.label} has nothing to toggle")
        idx = self._index(record_id)
        existing = self.records[idx]
        turned_on = not getattr(existing, flag)
        changes = {flag: turned_on}
        if turned_on and self.kind.toggle_day_field:
            changes[self.kind.toggle_day_field] = today or date.today()
        record = existing.model_copy(update=changes)
        return Mutation(
            store=self._replace(idx, record),
            operation=Operation.TOGGLE,
            record=record,
            message=self.kind.confirm("toggle_on" if turned_on else "toggle_off", record),
        )

    def view(self, selected_day=None) -> List[WidgetRecord]:
        return self.kind.view(self.records, selected_day)


def apply(
    store: Store,
    mode: Mode,
    operation: Operation,
    record_id: Optional[str] = None,
    values: Optional[dict] = None,
    now: Optional[datetime] = None,
    today: Optional[date] = None,
) -> Mutation:
    """Run one mutation if the mode allows it; otherwise hand back the store untouched."""
    operation = Operation(operation)
    if not can_mutate(store.kind, mode, operation):
        logger.debug("%s %s ignored in %s mode", store.kind.name, operation.value, Mode(mode).value)
        return Mutation(store=store, operation=operation, applied=False)

    if operation is Operation.CREATE:
        return store.create(values or {}, now=now)
    if operation is Operation.UPDATE:
        return store.update(record_id, values or {}, now=now)
    if operation is Operation.DELETE:
        return store.delete(record_id)
    return store.toggle(record_id, today=today)
