"""Data models for the SkillPort submission relay."""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


# Type aliases for wire enums
Difficulty = Literal["easy", "medium", "hard"]

SubmissionStatus = Literal[
    "accepted",
    "wrong_answer",
    "time_limit_exceeded",
    "runtime_error",
    "other",
]

KNOWN_STATUSES = frozenset(get_args(SubmissionStatus))

MessageType = Literal[
    "SUBMISSION_DETECTED",
    "GET_USER_ID",
    "SET_USER_ID",
    "TOGGLE_EXTENSION",
    "GET_STATUS",
    "GET_STATS",
    "GET_FLAGS",
]


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidMessage(RelayError):
    """An inbound message or its submission data failed validation."""


class UnknownMessageType(RelayError):
    """An inbound message carried a type tag the relay does not handle."""

    def __init__(self, message_type: Any = None):
        super().__init__("Unknown message type")
        self.message_type = message_type


class PersistenceError(RelayError):
    """The durable store rejected a read or write."""


class Submission(BaseModel):
    """A coding submission reported by the observer layer.

    Carries no identity of its own; ``userId`` and ``timestamp`` are attached
    by :meth:`payload` right before transmission.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    problem_id: str | None = None
    problem_title: str = Field(
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices("problemTitle", "title", "problem_title"),
        serialization_alias="problemTitle",
    )
    platform: str = "other"
    language: str = ""
    difficulty: Difficulty
    status: SubmissionStatus = "accepted"
    execution_time: float | None = Field(default=None, ge=0)
    code: str | None = Field(default=None, max_length=10000)

    @field_validator("problem_id", mode="before")
    @classmethod
    def _coerce_problem_id(cls, value: Any) -> Any:
        # Judges report numeric ids on some platforms
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("problem_title", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("platform", "difficulty", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        # Judges phrase verdicts differently ("Wrong Answer", "Compile Error")
        if isinstance(value, str):
            status = value.strip().lower().replace(" ", "_")
            return status if status in KNOWN_STATUSES else "other"
        return value

    @classmethod
    def from_observer(cls, data: dict[str, Any]) -> "Submission":
        """Validate raw observer data.

        Raises:
            InvalidMessage: If required fields are missing or malformed
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'data'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidMessage(f"Invalid submission: {problems}") from e

    def payload(self, user_id: str, timestamp_ms: int) -> dict[str, Any]:
        """Build the JSON body sent to the ingestion endpoint.

        Args:
            user_id: Owner of the submission
            timestamp_ms: Milliseconds since epoch, captured at send time

        Returns:
            Submission fields (camelCase, unset optionals omitted) plus
            ``userId`` and ``timestamp``
        """
        body = self.model_dump(by_alias=True, exclude_none=True)
        body["userId"] = user_id
        body["timestamp"] = timestamp_ms
        return body


# --- Inbound messages ---


def _require(raw: dict[str, Any], key: str, kind: type | tuple[type, ...], message_type: str) -> Any:
    if key not in raw:
        raise InvalidMessage(f"{message_type} requires '{key}'")
    value = raw[key]
    if not isinstance(value, kind):
        raise InvalidMessage(f"{message_type} has invalid '{key}'")
    return value


@dataclass(frozen=True)
class SubmissionDetected:
    """The observer layer saw a submission on a judge site."""

    type: ClassVar[MessageType] = "SUBMISSION_DETECTED"

    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SubmissionDetected":
        data = raw.get("data")
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidMessage("SUBMISSION_DETECTED has invalid 'data'")
        return cls(data=data)


@dataclass(frozen=True)
class GetUserId:
    type: ClassVar[MessageType] = "GET_USER_ID"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "GetUserId":
        return cls()


@dataclass(frozen=True)
class SetUserId:
    """Set the relay's user id; ``None`` clears it."""

    type: ClassVar[MessageType] = "SET_USER_ID"

    user_id: str | None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SetUserId":
        return cls(user_id=_require(raw, "userId", (str, type(None)), cls.type))


@dataclass(frozen=True)
class ToggleExtension:
    type: ClassVar[MessageType] = "TOGGLE_EXTENSION"

    enabled: bool

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ToggleExtension":
        return cls(enabled=_require(raw, "enabled", bool, cls.type))


@dataclass(frozen=True)
class GetStatus:
    type: ClassVar[MessageType] = "GET_STATUS"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "GetStatus":
        return cls()


@dataclass(frozen=True)
class GetStats:
    type: ClassVar[MessageType] = "GET_STATS"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "GetStats":
        return cls()


@dataclass(frozen=True)
class GetFlags:
    type: ClassVar[MessageType] = "GET_FLAGS"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "GetFlags":
        return cls()


InboundMessage = (
    SubmissionDetected
    | GetUserId
    | SetUserId
    | ToggleExtension
    | GetStatus
    | GetStats
    | GetFlags
)


# --- Relay state ---


@dataclass
class RelayState:
    """Process-wide relay state owned by the controller."""

    user_id: str | None = None
    is_enabled: bool = True

    @property
    def is_active(self) -> bool:
        """True when detected submissions are forwarded."""
        return self.is_enabled and self.user_id is not None


@dataclass
class DeliveryResult:
    """Outcome of one POST to the ingestion API."""

    ok: bool
    server_id: str | None = None
    reason: str | None = None
    status_code: int | None = None


@dataclass
class SubmissionRecord:
    """A relayed submission kept in local history."""

    problem_id: str
    problem_title: str
    platform: str
    difficulty: str
    status: str
    submitted_at: int  # ms since epoch
    code: str = ""

    @property
    def question_key(self) -> str:
        """Identity used to compare two submissions' problems."""
        return self.problem_id or self.problem_title

    @classmethod
    def from_submission(cls, submission: Submission, submitted_at: int) -> "SubmissionRecord":
        return cls(
            problem_id=submission.problem_id or "",
            problem_title=submission.problem_title,
            platform=submission.platform,
            difficulty=submission.difficulty,
            status=submission.status,
            submitted_at=submitted_at,
            code=submission.code or "",
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "problemId": self.problem_id,
            "problemTitle": self.problem_title,
            "platform": self.platform,
            "difficulty": self.difficulty,
            "status": self.status,
            "submittedAt": self.submitted_at,
            "code": self.code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SubmissionRecord":
        """Create from dictionary."""
        return cls(
            problem_id=data.get("problemId", ""),
            problem_title=data["problemTitle"],
            platform=data.get("platform", "other"),
            difficulty=data.get("difficulty", ""),
            status=data.get("status", "accepted"),
            submitted_at=int(data["submittedAt"]),
            code=data.get("code", ""),
        )


@dataclass
class RapidSolveFlag:
    """Two different medium/hard problems accepted in quick succession."""

    flagged_at: int
    reason: str
    gap_ms: int
    previous: SubmissionRecord
    current: SubmissionRecord

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "flaggedAt": self.flagged_at,
            "reason": self.reason,
            "gapMs": self.gap_ms,
            "previous": self.previous.to_dict(),
            "current": self.current.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RapidSolveFlag":
        """Create from dictionary."""
        return cls(
            flagged_at=int(data["flaggedAt"]),
            reason=data.get("reason", ""),
            gap_ms=int(data.get("gapMs", 0)),
            previous=SubmissionRecord.from_dict(data["previous"]),
            current=SubmissionRecord.from_dict(data["current"]),
        )


@dataclass
class UserStats:
    """Running counters over relayed submissions."""

    today_submissions: int = 0
    today_accepted: int = 0
    current_streak: int = 0
    total_problems: int = 0
    platform_stats: dict[str, int] = field(default_factory=dict)
    last_active_date: str | None = None  # ISO date of the last submission
    last_accepted_date: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "todaySubmissions": self.today_submissions,
            "todayAccepted": self.today_accepted,
            "currentStreak": self.current_streak,
            "totalProblems": self.total_problems,
            "platformStats": dict(self.platform_stats),
            "lastActiveDate": self.last_active_date,
            "lastAcceptedDate": self.last_accepted_date,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserStats":
        """Create from dictionary."""
        return cls(
            today_submissions=int(data.get("todaySubmissions", 0)),
            today_accepted=int(data.get("todayAccepted", 0)),
            current_streak=int(data.get("currentStreak", 0)),
            total_problems=int(data.get("totalProblems", 0)),
            platform_stats={k: int(v) for k, v in data.get("platformStats", {}).items()},
            last_active_date=data.get("lastActiveDate"),
            last_accepted_date=data.get("lastAcceptedDate"),
        )
