from __future__ import annotations

import copy
import json
import uuid
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog
from cryptography.fernet import Fernet, InvalidToken

log = structlog.get_logger()


def encrypt_bytes(key_str: str, data: bytes) -> bytes:
    return Fernet(key_str.encode("utf-8")).encrypt(data)


def decrypt_bytes(key_str: str, token: bytes) -> bytes:
    try:
        return Fernet(key_str.encode("utf-8")).decrypt(token)
    except InvalidToken as e:
        raise ValueError("Failed to decrypt progress store (wrong key or corrupted file).") from e


@dataclass(frozen=True)
class DecisionLogEntry:
    id: str
    kind: str
    context: dict[str, Any]
    result: dict[str, Any]
    confidence: float
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProgressSource(Protocol):
    def get_system_state(self) -> dict[str, Any]: ...

    def get_daily_routine(self, day: date) -> dict[str, Any] | None: ...

    def get_execution_history(self, days: int) -> list[dict[str, Any]]: ...

    def get_routine_history(self, days: int) -> list[dict[str, Any]]: ...

    def get_skill_progress(self, track_id: str, week_number: int) -> list[dict[str, Any]]: ...

    def get_time_tracking(self, days: int) -> list[dict[str, Any]]: ...

    def get_upcoming_events(self, start: date, horizon_days: int) -> list[dict[str, Any]]: ...

    def get_day_type(self, day: date) -> str: ...


class DecisionLog(Protocol):
    def log_ai_decision(
        self, kind: str, context: Mapping[str, Any], result: Mapping[str, Any], confidence: float
    ) -> DecisionLogEntry: ...


def _empty_state() -> dict[str, Any]:
    return {
        "system_state": {},
        "daily_executions": {},
        "daily_routines": {},
        "skill_progress": [],
        "time_tracking": [],
        "events": [],
        "ai_decisions": [],
    }


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class JsonProgressStore:
    """
    Local progress store kept as ONE JSON document.

    `path=None` keeps everything in memory. With `fernet_key` the file on disk
    is Fernet-encrypted. The `ai_decisions` list is append-only.
    """

    def __init__(
        self,
        path: str | None = None,
        *,
        fernet_key: str | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.path = Path(path) if path else None
        self.fernet_key = fernet_key
        self._today: Callable[[], date] = today or date.today
        self._state = self._load()

    def _load(self) -> dict[str, Any]:
        state = _empty_state()
        if self.path is None or not self.path.exists():
            return state
        raw = self.path.read_bytes()
        if self.fernet_key:
            raw = decrypt_bytes(self.fernet_key, raw)
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Progress store payload must be a JSON object.")
        state.update(payload)
        return state

    def _flush(self) -> None:
        if self.path is None:
            return
        raw = json.dumps(self._state, default=str).encode("utf-8")
        if self.fernet_key:
            raw = encrypt_bytes(self.fernet_key, raw)
        # Readers only ever see a complete document.
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_bytes(raw)
        tmp.replace(self.path)

    def _window(self, days: int) -> tuple[date, date]:
        today = self._today()
        return today - timedelta(days=max(0, days) - 1), today

    # System state

    def get_system_state(self) -> dict[str, Any]:
        return copy.deepcopy(self._state["system_state"])

    def update_system_state(self, **values: Any) -> dict[str, Any]:
        self._state["system_state"].update(values)
        self._flush()
        return self.get_system_state()

    # Daily execution / routines

    def save_daily_execution(self, day: date | str, **record: Any) -> dict[str, Any]:
        key = _as_date(day).isoformat()
        self._state["daily_executions"][key] = {"date": key, **record}
        self._flush()
        return copy.deepcopy(self._state["daily_executions"][key])

    def get_daily_execution(self, day: date | str) -> dict[str, Any] | None:
        record = self._state["daily_executions"].get(_as_date(day).isoformat())
        return copy.deepcopy(record) if record is not None else None

    def save_daily_routine(self, day: date | str, **record: Any) -> dict[str, Any]:
        key = _as_date(day).isoformat()
        self._state["daily_routines"][key] = {"date": key, **record}
        self._flush()
        return copy.deepcopy(self._state["daily_routines"][key])

    def get_daily_routine(self, day: date | str) -> dict[str, Any] | None:
        record = self._state["daily_routines"].get(_as_date(day).isoformat())
        return copy.deepcopy(record) if record is not None else None

    def _history(self, bucket: str, days: int) -> list[dict[str, Any]]:
        first, last = self._window(days)
        records = [
            copy.deepcopy(r)
            for key, r in self._state[bucket].items()
            if first <= _as_date(key) <= last
        ]
        return sorted(records, key=lambda r: r["date"])

    def get_execution_history(self, days: int) -> list[dict[str, Any]]:
        return self._history("daily_executions", days)

    def get_routine_history(self, days: int) -> list[dict[str, Any]]:
        return self._history("daily_routines", days)

    # Skill progress / time tracking

    def save_skill_progress(self, track_id: str, week_number: int, **record: Any) -> dict[str, Any]:
        entry = {"track_id": track_id, "week_number": week_number, **record}
        self._state["skill_progress"].append(entry)
        self._flush()
        return copy.deepcopy(entry)

    def get_skill_progress(self, track_id: str, week_number: int) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(r)
            for r in self._state["skill_progress"]
            if r.get("track_id") == track_id and r.get("week_number") == week_number
        ]

    def log_time(self, day: date | str, category: str, minutes: int) -> dict[str, Any]:
        entry = {"date": _as_date(day).isoformat(), "category": category, "minutes": int(minutes)}
        self._state["time_tracking"].append(entry)
        self._flush()
        return dict(entry)

    def get_time_tracking(self, days: int) -> list[dict[str, Any]]:
        first, last = self._window(days)
        return [dict(r) for r in self._state["time_tracking"] if first <= _as_date(r["date"]) <= last]

    # Calendar

    def add_event(self, day: date | str, title: str, type: str) -> dict[str, Any]:
        entry = {"date": _as_date(day).isoformat(), "title": title, "type": type}
        self._state["events"].append(entry)
        self._flush()
        return dict(entry)

    def get_upcoming_events(self, start: date | str, horizon_days: int) -> list[dict[str, Any]]:
        first = _as_date(start)
        last = first + timedelta(days=horizon_days)
        events = [dict(e) for e in self._state["events"] if first <= _as_date(e["date"]) <= last]
        return sorted(events, key=lambda e: e["date"])

    def get_day_type(self, day: date | str) -> str:
        day = _as_date(day)
        types = {e.get("type") for e in self._state["events"] if _as_date(e["date"]) == day}
        if "exam" in types:
            return "exam"
        if "holiday" in types:
            return "holiday"
        return "weekend" if day.weekday() >= 5 else "weekday"

    # Decision log

    def log_ai_decision(
        self, kind: str, context: Mapping[str, Any], result: Mapping[str, Any], confidence: float
    ) -> DecisionLogEntry:
        entry = DecisionLogEntry(
            id=uuid.uuid4().hex,
            kind=kind,
            context=json.loads(json.dumps(dict(context), default=str)),
            result=json.loads(json.dumps(dict(result), default=str)),
            confidence=float(confidence),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._state["ai_decisions"].append(entry.to_dict())
        self._flush()
        log.debug("ai_decision_logged", kind=kind, confidence=entry.confidence)
        return entry

    def get_ai_decisions(self, kind: str | None = None) -> list[DecisionLogEntry]:
        return [
            DecisionLogEntry(**copy.deepcopy(e))
            for e in self._state["ai_decisions"]
            if kind is None or e["kind"] == kind
        ]
