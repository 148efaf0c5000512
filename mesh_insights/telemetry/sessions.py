"""
Session registry.

Each client connection gets one ``Session`` from ``start_session`` until
``end_session``. Calls against an id that is not active are no-ops, so a
late or duplicate call after the session ended can never mutate it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from mesh_insights.telemetry.events import EventKind
from mesh_insights.telemetry.privacy import PlatformInfo, generate_session_id
from mesh_insights.utils.clock import Clock

logger = logging.getLogger(__name__)

# (kind, attributes, raw session id)
EmitFn = Callable[[str, Dict[str, Any], Optional[str]], Any]
GaugeFn = Callable[[int], None]

ACCESSIBILITY_HIGH_CONTRAST = "highContrast"
ACCESSIBILITY_REDUCED_MOTION = "reducedMotion"


def parse_accessibility_modes(value: Any) -> Tuple[str, ...]:
    """Accept a list, a set or a comma-separated string of mode names."""
    if not value:
        return ()
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = [str(v) for v in value]
    else:
        return ()
    return tuple(p.strip() for p in parts if p and p.strip())


@dataclass
class Session:
    """Mutable per-connection state; owned by the registry."""
    session_id: str
    started_at: float
    platform: PlatformInfo
    features: Dict[str, None] = field(default_factory=dict)  # insertion-ordered set
    interaction_count: int = 0
    error_count: int = 0
    mesh_event_count: int = 0
    mesh_patterns: set = field(default_factory=set)
    accessibility_modes: set = field(default_factory=set)


@dataclass(frozen=True)
class SessionView:
    """Read-only copy of a session for analysis."""
    started_at: float
    features: Tuple[str, ...]
    interaction_count: int
    error_count: int
    mesh_event_count: int
    mesh_patterns: FrozenSet[str]
    accessibility_modes: FrozenSet[str]


@dataclass(frozen=True)
class SessionSummary:
    """What ``end_session`` reports and emits."""
    session_id: str
    duration_seconds: float
    features_used: int
    total_interactions: int
    errors_encountered: int
    mesh_interactions: int
    mesh_pattern_count: int
    end_reason: str = "normal"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def event_attributes(self) -> Dict[str, Any]:
        """Summary fields without the raw id, for the session_end event."""
        data = self.to_dict()
        data.pop("session_id")
        return data


class SessionRegistry:
    """
    Tracks active sessions and their counters.

    ``emit`` is called with (kind, attributes, raw_session_id) for the
    session_start / session_end events; ``on_active_change`` receives the
    current number of active sessions after each start or end.
    """

    def __init__(
        self,
        clock: Clock,
        emit: Optional[EmitFn] = None,
        on_active_change: Optional[GaugeFn] = None,
    ):
        self._clock = clock
        self._emit = emit
        self._on_active_change = on_active_change
        self._sessions: Dict[str, Session] = {}
        self._started_total = 0
        self._ended_total = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def start_session(self, platform_info: Any = None) -> str:
        session_id = generate_session_id()
        platform = PlatformInfo.from_raw(platform_info)
        self._sessions[session_id] = Session(
            session_id=session_id,
            started_at=self._clock.now(),
            platform=platform,
        )
        self._started_total += 1
        self._notify_active()

        if self._emit:
            self._emit(EventKind.SESSION_START.value, platform.to_dict(), session_id)

        logger.debug(f"[Sessions] Started session ({len(self._sessions)} active)")
        return session_id

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def record_interaction(self, session_id: Optional[str]) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.interaction_count += 1
        return True

    def record_error(self, session_id: Optional[str]) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.error_count += 1
        return True

    def record_feature(self, session_id: Optional[str], feature: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.features.setdefault(feature, None)
        return True

    def record_mesh_event(
        self,
        session_id: Optional[str],
        pattern: Optional[str] = None,
        accessibility_modes: Iterable[str] = (),
    ) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.mesh_event_count += 1
        if pattern:
            session.mesh_patterns.add(pattern)
        session.accessibility_modes.update(accessibility_modes)
        return True

    def end_session(self, session_id: Optional[str], reason: str = "normal") -> Optional[SessionSummary]:
        session = self.get(session_id)
        if session is None:
            return None

        summary = SessionSummary(
            session_id=session.session_id,
            duration_seconds=max(0.0, self._clock.now() - session.started_at),
            features_used=len(session.features),
            total_interactions=session.interaction_count,
            errors_encountered=session.error_count,
            mesh_interactions=session.mesh_event_count,
            mesh_pattern_count=len(session.mesh_patterns),
            end_reason=reason or "normal",
        )

        # Emit while the id is still live so the event keeps its session ref.
        if self._emit:
            self._emit(EventKind.SESSION_END.value, summary.event_attributes(), session.session_id)

        del self._sessions[session.session_id]
        self._ended_total += 1
        self._notify_active()

        logger.debug(
            f"[Sessions] Ended session after {summary.duration_seconds:.1f}s "
            f"({len(self._sessions)} active)"
        )
        return summary

    def snapshot(self) -> List[SessionView]:
        return [
            SessionView(
                started_at=s.started_at,
                features=tuple(s.features),
                interaction_count=s.interaction_count,
                error_count=s.error_count,
                mesh_event_count=s.mesh_event_count,
                mesh_patterns=frozenset(s.mesh_patterns),
                accessibility_modes=frozenset(s.accessibility_modes),
            )
            for s in self._sessions.values()
        ]

    def active_patterns(self) -> List[str]:
        patterns: Dict[str, None] = {}
        for session in self._sessions.values():
            for pattern in sorted(session.mesh_patterns):
                patterns.setdefault(pattern, None)
        return list(patterns)

    def _notify_active(self) -> None:
        if self._on_active_change:
            self._on_active_change(len(self._sessions))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "started_total": self._started_total,
            "ended_total": self._ended_total,
        }
