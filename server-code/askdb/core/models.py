from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from askdb.core.errors import ErrorKind


class _CamelModel(BaseModel):
    # Cache artifact and API payloads use camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Schema snapshot (persisted) ---

class ForeignKey(_CamelModel):
    column: str
    references_table: str
    references_column: str
    constraint_name: Optional[str] = None


class Index(_CamelModel):
    name: str
    definition: str


class Column(_CamelModel):
    name: str
    type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    foreign_key_ref: Optional[str] = None
    position: Optional[int] = None
    default: Optional[str] = None
    max_length: Optional[int] = None


class Table(_CamelModel):
    name: str
    row_count: int = 0
    columns: List[Column] = Field(default_factory=list)
    primary_key: List[str] = Field(default_factory=list)
    foreign_keys: List[ForeignKey] = Field(default_factory=list)
    indexes: List[Index] = Field(default_factory=list)
    error: Optional[str] = None

    def column(self, name: str) -> Optional[Column]:
        for c in self.columns:
            if c.name == name:
                return c
        return None

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


class ExtensionInfo(_CamelModel):
    installed: bool = False
    version: Optional[str] = None
    error: Optional[str] = None


class SchemaSnapshot(_CamelModel):
    tables: List[Table] = Field(default_factory=list)
    total_tables: int = 0
    cached_at: datetime
    database_name: Optional[str] = None
    pg_extension_info: ExtensionInfo = Field(default_factory=ExtensionInfo)
    database_size: Optional[str] = None
    partial: bool = False

    def table(self, name: str) -> Optional[Table]:
        for t in self.tables:
            if t.name == name:
                return t
        return None

    @property
    def failed_tables(self) -> List[str]:
        return [t.name for t in self.tables if t.error]

    def age_hours(self, now: datetime) -> float:
        cached = self.cached_at if self.cached_at.tzinfo else self.cached_at.replace(tzinfo=timezone.utc)
        return (now - cached).total_seconds() / 3600.0


# --- Concept resolution ---

class CandidateTable(_CamelModel):
    table: str
    reason: str
    relevant_columns: List[str] = Field(default_factory=list)
    row_count: int = 0


class ConceptMatch(_CamelModel):
    concept: str
    candidate_tables: List[CandidateTable] = Field(default_factory=list)


# --- Per-request, never persisted ---

class CompletenessState(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    ABSENT = "absent"


@dataclass(frozen=True)
class QueryCandidate:
    raw_model_text: str
    extracted_sql: Optional[str]
    completeness_state: CompletenessState
    continuation_lines: int = 0


class Verdict(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_UNSAFE = "rejected_unsafe"
    REJECTED_MALFORMED = "rejected_malformed"


@dataclass(frozen=True)
class ValidatedQuery:
    sql: str
    verdict: Verdict
    reasons: Tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.verdict is Verdict.ACCEPTED


@dataclass
class QueryExecutionResult:
    rows: List[Dict[str, Any]]
    columns: List[str]
    row_count: int = 0

    def __post_init__(self) -> None:
        if not self.row_count:
            self.row_count = len(self.rows)


@dataclass(frozen=True)
class QueryExecutionError:
    error_kind: ErrorKind
    message: str
    sql: str
    hint: Optional[str] = None
    sqlstate: Optional[str] = None


# --- Charts / API ---

class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    YEAR_ON_YEAR = "yearonyear"


class ChartData(_CamelModel):
    chart_type: ChartType = ChartType.BAR
    title: str = ""
    label_column: Optional[str] = None
    series: List[str] = Field(default_factory=list)
    # {"name", "value"} pairs; multi-series points carry one key per series instead of "value"
    tuples: List[Dict[str, Any]] = Field(default_factory=list)


class QueryRequest(_CamelModel):
    question: str = Field(min_length=1)
    context: str = ""


class QueryResponse(_CamelModel):
    sql: str
    source: str
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    chart_tuples: List[Dict[str, Any]] = Field(default_factory=list)
    chart: Optional[ChartData] = None
    briefing: str = ""


@dataclass
class TableEdges:
    outgoing: List[Dict[str, str]] = field(default_factory=list)
    incoming: List[Dict[str, str]] = field(default_factory=list)
