"""Core data models shared by parsing, caching, and graph analysis layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """Classified parser failure kinds used to pick recovery strategies."""

    BRACKET_MISMATCH = "bracket_mismatch"
    QUOTE_MISMATCH = "quote_mismatch"
    MISSING_SEMICOLON = "missing_semicolon"
    ENCODING_ERROR = "encoding_error"
    RESOURCE_ERROR = "resource_error"
    TIMEOUT_ERROR = "timeout_error"
    PARSE_ERROR = "parse_error"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class SourceFile:
    path: str
    relative_path: str
    language: str
    extension: str


@dataclass
class FunctionInfo:
    name: str
    line_start: int
    complexity: int = 1
    exported: bool = False
    is_async: bool = False
    decorators: List[str] = field(default_factory=list)
    parameters: List[str] = field(default_factory=list)


@dataclass
class ClassInfo:
    name: str
    methods: List[str] = field(default_factory=list)
    exported: bool = False


@dataclass
class ImportInfo:
    source: str
    kind: str = "import"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of one parse invocation.

    Always well-formed: failures are carried in ``error``/``warning`` and the
    ``strategy`` tag, never raised to the caller.
    """

    success: bool
    ast: Any = None
    functions: List[FunctionInfo] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    complexity: int = 1
    error: Optional[str] = None
    from_fallback: bool = False
    strategy: str = "primary"
    warning: Optional[str] = None
    confidence: float = 1.0
    recovery: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ParseResult":
        return cls(
            success=bool(payload.get("success", False)),
            ast=payload.get("ast"),
            functions=[FunctionInfo(**f) for f in payload.get("functions", [])],
            classes=[ClassInfo(**c) for c in payload.get("classes", [])],
            imports=[ImportInfo(**i) for i in payload.get("imports", [])],
            complexity=int(payload.get("complexity", 1)),
            error=payload.get("error"),
            from_fallback=bool(payload.get("from_fallback", False)),
            strategy=payload.get("strategy", "primary"),
            warning=payload.get("warning"),
            confidence=float(payload.get("confidence", 1.0)),
            recovery=payload.get("recovery"),
        )


@dataclass
class RecoveryResult:
    success: bool
    strategy: str = "none"
    fixed_content: Optional[str] = None
    structure: Optional[Dict[str, Any]] = None
    changes: List[str] = field(default_factory=list)
    confidence: float = 0.0
    reason: str = ""
    suggestions: List[str] = field(default_factory=list)


@dataclass
class CacheEntry:
    cache_key: str
    file_path: str
    branch: str
    commit_hash: Optional[str]
    timestamp: str
    access_time: str
    result: ParseResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache_key": self.cache_key,
            "file_path": self.file_path,
            "branch": self.branch,
            "commit_hash": self.commit_hash,
            "timestamp": self.timestamp,
            "access_time": self.access_time,
            "result": self.result.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheEntry":
        return cls(
            cache_key=payload["cache_key"],
            file_path=payload["file_path"],
            branch=payload["branch"],
            commit_hash=payload.get("commit_hash"),
            timestamp=payload["timestamp"],
            access_time=payload.get("access_time", payload["timestamp"]),
            result=ParseResult.from_dict(payload["result"]),
        )


@dataclass
class ExportInfo:
    name: str
    kind: str
    signature: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DependencyNode:
    id: str
    language: str
    file: SourceFile
    exports: List[ExportInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)


@dataclass
class DependencyEdge:
    """Directed edge between two graph nodes.

    ``cross_language`` is derived from the endpoint languages captured when
    the graph creates the edge; it cannot be assigned.
    """

    source: str
    target: str
    edge_type: str
    source_language: str
    target_language: str
    interface_type: Optional[str] = None
    import_source: Optional[str] = None

    @property
    def cross_language(self) -> bool:
        return self.source_language != self.target_language

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "type": self.edge_type,
            "cross_language": self.cross_language,
            "interface_type": self.interface_type,
            "import_source": self.import_source,
        }


@dataclass
class InterfaceDescriptor:
    language: str
    file: str
    interface_type: str
    framework: str = "unknown"
    name: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    properties: List[str] = field(default_factory=list)


@dataclass
class Pattern:
    type: str
    confidence: float
    description: str
    recommendation: str
    severity: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Recommendation:
    type: str
    priority: str
    title: str
    description: str
    action: str
