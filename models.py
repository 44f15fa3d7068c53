#models.py
from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import ClassVar, Dict, FrozenSet, List, Literal, Optional, Set

Artifact = Literal["accounts", "terms", "abstract_courses", "courses"]

BatchState = Literal[
    "created",
    "importing",
    "imported",
    "imported_with_messages",
    "failed_with_messages",
]

DEFAULT_TERM_NAME = "Default Term"


@dataclass(slots=True)
class SisRecord:
    """
    Common columns for every SIS-managed row.

    `stuck_sis_fields` holds the sticky columns that were edited outside of
    an SIS import; imports leave them alone unless stickiness is overridden.
    """
    TABLE: ClassVar[str] = ""
    STICKY_FIELDS: ClassVar[FrozenSet[str]] = frozenset()

    id: Optional[int] = None
    root_account_id: Optional[int] = None
    sis_source_id: Optional[str] = None
    integration_id: Optional[str] = None
    workflow_state: str = "active"
    sis_batch_id: Optional[int] = None
    stuck_sis_fields: Set[str] = field(default_factory=set)

    @classmethod
    def column_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @property
    def new_record(self) -> bool:
        return self.id is None

    @property
    def deleted(self) -> bool:
        return self.workflow_state == "deleted"


@dataclass(slots=True)
class Account(SisRecord):
    TABLE: ClassVar[str] = "accounts"
    STICKY_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"name", "parent_account_id"})

    name: str = ""
    parent_account_id: Optional[int] = None
    default_enrollment_term_id: Optional[int] = None  # root accounts only

    @property
    def root_account(self) -> bool:
        return self.root_account_id is None


@dataclass(slots=True)
class EnrollmentTerm(SisRecord):
    TABLE: ClassVar[str] = "enrollment_terms"
    STICKY_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"name", "start_at", "end_at"})

    name: str = ""
    start_at: Optional[str] = None  # ISO-8601 UTC (Z)
    end_at: Optional[str] = None


@dataclass(slots=True)
class AbstractCourse(SisRecord):
    TABLE: ClassVar[str] = "abstract_courses"
    STICKY_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"name", "short_name", "enrollment_term_id"})

    name: str = ""
    short_name: str = ""
    account_id: Optional[int] = None
    enrollment_term_id: Optional[int] = None


@dataclass(slots=True)
class Course(SisRecord):
    TABLE: ClassVar[str] = "courses"
    STICKY_FIELDS: ClassVar[FrozenSet[str]] = frozenset({
        "name",
        "course_code",
        "account_id",
        "enrollment_term_id",
        "start_at",
        "conclude_at",
        "workflow_state",
    })

    workflow_state: str = "created"  # created, claimed, available, completed, deleted
    name: str = ""
    course_code: str = ""  # the CSV short_name
    account_id: Optional[int] = None
    enrollment_term_id: Optional[int] = None
    abstract_course_id: Optional[int] = None
    start_at: Optional[str] = None
    conclude_at: Optional[str] = None


@dataclass(slots=True)
class SisBatch:
    TABLE: ClassVar[str] = "sis_batches"

    id: Optional[int] = None
    root_account_id: Optional[int] = None
    workflow_state: BatchState = "created"
    progress: int = 0
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    options: Dict[str, object] = field(default_factory=dict)
    inputs: List[Dict[str, str]] = field(default_factory=list)  # name + sha256 of each submitted file
    created_at: Optional[str] = None
    ended_at: Optional[str] = None
    error_count: int = 0

    @classmethod
    def column_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


@dataclass(slots=True)
class SisBatchError:
    TABLE: ClassVar[str] = "sis_batch_errors"

    id: Optional[int] = None
    root_account_id: Optional[int] = None
    sis_batch_id: Optional[int] = None
    file: str = ""
    message: str = ""
    failure: bool = False  # False for row messages, True for file- and batch-level problems
    row: Optional[int] = None  # physical line number, header is line 1
    row_info: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def column_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


@dataclass(frozen=True, slots=True)
class SisImportOptions:
    override_sis_stickiness: bool = False
    add_sis_stickiness: bool = False
    clear_sis_stickiness: bool = False
    max_messages: Optional[int] = None  # None -> batch default

    def __post_init__(self):
        if self.add_sis_stickiness and self.clear_sis_stickiness:
            raise ValueError("add_sis_stickiness and clear_sis_stickiness are mutually exclusive")
        if self.max_messages is not None and self.max_messages < 1:
            raise ValueError("max_messages must be a positive integer")

    def to_dict(self) -> Dict[str, object]:
        return {
            "override_sis_stickiness": self.override_sis_stickiness,
            "add_sis_stickiness": self.add_sis_stickiness,
            "clear_sis_stickiness": self.clear_sis_stickiness,
            "max_messages": self.max_messages,
        }


MODELS = (Account, EnrollmentTerm, AbstractCourse, Course, SisBatch, SisBatchError)
