# FILE: quizplayer/proctoring/monitor.py
"""
Violation monitor

Classifies raw environment signals forwarded by the browser client (visibility
change, clipboard, context menu, key presses) into violation kinds while an
attempt is active, and emits at most one effective violation per question index.

The monitor never touches attempt state; subscribers (the owning session, UI
alert hooks) react to the emitted events.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set

from quizplayer.config import DEFAULT_ALLOWED_KEYS
from quizplayer.proctoring.clock import Clock, now_ms
from quizplayer.services.telemetry import record_event

logger = logging.getLogger(__name__)


class ViolationKind(str, Enum):
    """Integrity violation kinds"""
    TAB_SWITCH = "tab_switch"
    RIGHT_CLICK = "right_click"
    COPY_ATTEMPT = "copy_attempt"
    CUT_ATTEMPT = "cut_attempt"
    PASTE_ATTEMPT = "paste_attempt"
    KEYBOARD_BLOCKED = "keyboard_blocked"
    KEYBOARD_SHORTCUT = "keyboard_shortcut"


class SignalType(str, Enum):
    """Raw environment signals forwarded by the client"""
    VISIBILITY_HIDDEN = "visibility_hidden"
    BLUR = "blur"
    CONTEXT_MENU = "contextmenu"
    COPY = "copy"
    CUT = "cut"
    PASTE = "paste"
    KEYDOWN = "keydown"


_DIRECT_KINDS = {
    SignalType.VISIBILITY_HIDDEN: ViolationKind.TAB_SWITCH,
    SignalType.BLUR: ViolationKind.TAB_SWITCH,
    SignalType.CONTEXT_MENU: ViolationKind.RIGHT_CLICK,
    SignalType.COPY: ViolationKind.COPY_ATTEMPT,
    SignalType.CUT: ViolationKind.CUT_ATTEMPT,
    SignalType.PASTE: ViolationKind.PASTE_ATTEMPT,
}


@dataclass(frozen=True)
class Signal:
    """One environment signal; key/modifier flags only matter for keydown"""
    type: SignalType
    key: Optional[str] = None
    ctrl: bool = False
    meta: bool = False
    alt: bool = False

    @property
    def has_modifier(self) -> bool:
        return self.ctrl or self.meta or self.alt


@dataclass(frozen=True)
class AppliedViolation:
    """First effective violation on a question index"""
    question_index: int
    kind: ViolationKind
    timestamp_ms: int


@dataclass(frozen=True)
class SignalRecord:
    """Audit entry for every signal seen while armed"""
    question_index: int
    kind: ViolationKind
    timestamp_ms: int
    effective: bool


ViolationListener = Callable[[AppliedViolation], None]


def classify_signal(signal: Signal, allowed_keys: Iterable[str] = DEFAULT_ALLOWED_KEYS) -> Optional[ViolationKind]:
    """
    Map a raw signal to exactly one violation kind, or None when it is harmless.

    Modifier combos are checked before the allow-list, so Ctrl+ArrowUp and
    Ctrl+C are both keyboard_shortcut.
    """
    if signal.type in _DIRECT_KINDS:
        return _DIRECT_KINDS[signal.type]
    if signal.type == SignalType.KEYDOWN:
        if signal.has_modifier:
            return ViolationKind.KEYBOARD_SHORTCUT
        if signal.key not in set(allowed_keys):
            return ViolationKind.KEYBOARD_BLOCKED
        return None
    raise ValueError(f"Unknown signal type: {signal.type}")


class ViolationMonitor:
    """Arm/disarm lifecycle around one attempt; emits typed violation events"""

    def __init__(
        self,
        allowed_keys: Optional[Iterable[str]] = None,
        clock: Optional[Clock] = None,
        quiz_id: Optional[str] = None
    ):
        self.allowed_keys: Set[str] = set(allowed_keys if allowed_keys is not None else DEFAULT_ALLOWED_KEYS)
        self.clock = clock or now_ms
        self.quiz_id = quiz_id
        self.audit_log: List[SignalRecord] = []
        self._listeners: List[ViolationListener] = []
        self._flagged: Set[int] = set()
        self._cursor: Optional[Callable[[], int]] = None
        self._armed = False

    @property
    def armed(self) -> bool:
        return self._armed

    def arm(self, cursor: Callable[[], int]) -> None:
        """Start watching a fresh attempt; cursor returns the current question index"""
        self._cursor = cursor
        self._flagged = set()
        self.audit_log = []
        self._armed = True
        logger.debug(f"Violation monitor armed for quiz {self.quiz_id}")

    def disarm(self) -> None:
        """Stop producing violations immediately"""
        if self._armed:
            logger.debug(f"Violation monitor disarmed for quiz {self.quiz_id}")
        self._armed = False

    def subscribe(self, listener: ViolationListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def observe(self, signal: Signal) -> Optional[AppliedViolation]:
        """Classify a raw signal and record it"""
        kind = classify_signal(signal, self.allowed_keys)
        if kind is None:
            return None
        return self.record_signal(kind)

    def record_signal(self, kind: ViolationKind) -> Optional[AppliedViolation]:
        """Record a violation signal; None when disarmed or already flagged for this question"""
        if not self._armed or self._cursor is None:
            logger.debug(f"Signal {kind.value} ignored: monitor disarmed")
            return None

        index = self._cursor()
        timestamp = self.clock()
        effective = index not in self._flagged
        self.audit_log.append(SignalRecord(index, kind, timestamp, effective))
        record_event(
            "proctor_signal",
            quiz_id=self.quiz_id,
            question_index=index,
            kind=kind.value,
            effective=effective,
        )

        if not effective:
            logger.debug(f"Signal {kind.value} on question {index} already flagged (no-op)")
            return None

        self._flagged.add(index)
        violation = AppliedViolation(question_index=index, kind=kind, timestamp_ms=timestamp)
        logger.warning(f"VIOLATION: {kind.value} on question {index} in quiz {self.quiz_id}")
        self._emit(violation)
        return violation

    def _emit(self, violation: AppliedViolation) -> None:
        for listener in list(self._listeners):
            try:
                listener(violation)
            except Exception as e:
                logger.error(f"Violation listener {listener!r} failed: {e}", exc_info=True)
