"""Parser error classification and best-effort source repair.

Repairs are heuristics. A successful :class:`RecoveryResult` means a strategy
produced something usable as a structural signal, never that the repaired
content is valid syntax.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Callable, Dict, List, Optional

from . import config
from .budget import run_inline
from .models import ErrorCategory, RecoveryResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_BRACKET_WORDS = ("bracket", "brace", "paren", "{", "}", "(", ")")
_SEMICOLON_WORDS = ("semicolon", ";")
_QUOTE_WORDS = ("quote", "unterminated string", "string literal", "eol while scanning")


def classify_error(message: Optional[str], content: str = "") -> ErrorCategory:
    """Map a parser error message to an :class:`ErrorCategory`.

    Bracket, semicolon and quote sub-categories are only considered when the
    message reads like a syntax error.
    """
    text = (message or "").lower()
    if not text:
        return ErrorCategory.UNKNOWN_ERROR

    if "unexpected" in text or "syntax" in text:
        # Quote wording first: Python appends "(detected at line N)" to it
        if any(word in text for word in _QUOTE_WORDS):
            return ErrorCategory.QUOTE_MISMATCH
        if any(word in text for word in _BRACKET_WORDS):
            return ErrorCategory.BRACKET_MISMATCH
        if any(word in text for word in _SEMICOLON_WORDS):
            return ErrorCategory.MISSING_SEMICOLON
        return ErrorCategory.PARSE_ERROR

    if "parse" in text:
        return ErrorCategory.PARSE_ERROR
    if any(word in text for word in ("encoding", "character", "codec")):
        return ErrorCategory.ENCODING_ERROR
    if any(word in text for word in ("memory", "size", "limit", "recursion")):
        return ErrorCategory.RESOURCE_ERROR
    if "timeout" in text or "timed out" in text:
        return ErrorCategory.TIMEOUT_ERROR
    return ErrorCategory.UNKNOWN_ERROR


MANUAL_SUGGESTIONS: Dict[ErrorCategory, List[str]] = {
    ErrorCategory.BRACKET_MISMATCH: [
        "Check for missing or extra braces {}",
        "Verify function and class closures",
        "Use an editor with bracket matching",
    ],
    ErrorCategory.QUOTE_MISMATCH: [
        "Check for unmatched quotes",
        "Escape quotes in strings",
        "Use consistent quote style",
    ],
    ErrorCategory.MISSING_SEMICOLON: [
        "Add semicolons at line ends",
        "Enable automatic semicolon insertion",
    ],
    ErrorCategory.ENCODING_ERROR: [
        "Check file encoding (should be UTF-8)",
        "Remove special characters",
    ],
    ErrorCategory.RESOURCE_ERROR: [
        "File may be too large",
        "Try parsing smaller sections",
    ],
    ErrorCategory.TIMEOUT_ERROR: [
        "File complexity is too high",
        "Simplify code structure",
    ],
    ErrorCategory.UNKNOWN_ERROR: [
        "Check file syntax manually",
        "Try a different parser",
    ],
}
MANUAL_SUGGESTIONS[ErrorCategory.PARSE_ERROR] = MANUAL_SUGGESTIONS[ErrorCategory.UNKNOWN_ERROR]

_SECTION_SPLITTERS = {
    "javascript": re.compile(r"(?=(?:class|function|const\s+\w+\s*=\s*(?:function|\([^)]*\)\s*=>)))"),
    "python": re.compile(r"(?=(?:class|def)\s+\w+)"),
    "go": re.compile(r"(?=(?:func|type)\s+\w+)"),
}
_SECTION_SPLITTERS["typescript"] = _SECTION_SPLITTERS["javascript"]

_SEMICOLON_STATEMENT = re.compile(r"^(const|let|var|return|throw|break|continue)")
_TRAILING_CALL = re.compile(r"\w+\([^)]*\)$")
_MEMBER_ACCESS = re.compile(r"\w+\.\w+")

LARGE_CONTENT_THRESHOLD = 100_000
CHUNK_SIZE = 10_000


# ---------------------------------------------------------------------------
# Recovery engine
# ---------------------------------------------------------------------------

StrategyFn = Callable[[str, str, str, str], RecoveryResult]


class ErrorRecovery:
    """Runs the ordered repair strategies for a classified error.

    Each strategy may use ``max_recovery_time`` seconds of CPU time in the
    calling thread; a strategy that raises or overruns is logged, its result
    is discarded and the next one is tried.
    """

    def __init__(
        self,
        max_recovery_time: float = config.RECOVERY_STRATEGY_TIMEOUT,
        auto_fix: bool = True,
        partial_parsing: bool = True,
    ):
        self.max_recovery_time = max_recovery_time
        self.auto_fix = auto_fix
        self.partial_parsing = partial_parsing
        self._lock = threading.Lock()
        self._stats = {"total": 0, "recovered": 0, "auto_fixed": 0, "partially_parsed": 0}

        self._strategies: Dict[ErrorCategory, List[StrategyFn]] = {
            ErrorCategory.BRACKET_MISMATCH: [self.auto_fix_brackets, self.partial_parse_sections],
            ErrorCategory.QUOTE_MISMATCH: [self.auto_fix_quotes, self.escape_quotes],
            ErrorCategory.MISSING_SEMICOLON: [self.add_semicolons],
            ErrorCategory.ENCODING_ERROR: [self.fix_encoding],
            ErrorCategory.RESOURCE_ERROR: [self.reduce_content, self.chunked_parsing],
            ErrorCategory.TIMEOUT_ERROR: [self.fast_minimal_parse],
            ErrorCategory.PARSE_ERROR: [self.partial_parse_lines, self.structural_guess],
            ErrorCategory.UNKNOWN_ERROR: [self.partial_parse_lines, self.structural_guess],
        }

    def strategies_for(self, category: ErrorCategory) -> List[str]:
        return [fn.__name__ for fn in self._strategies.get(category, [])]

    def recover(
        self,
        category: ErrorCategory,
        error: Optional[str],
        file_path: str,
        content: str,
        language: str,
    ) -> RecoveryResult:
        """Try each strategy for *category* in order; first success wins."""
        self._bump("total")
        for strategy in self._strategies.get(category, self._strategies[ErrorCategory.UNKNOWN_ERROR]):
            name = strategy.__name__
            try:
                result, elapsed = run_inline(strategy, error or "", file_path, content, language)
            except Exception as exc:
                logger.warning("Recovery strategy %s failed for %s: %s", name, file_path, exc)
                continue
            if elapsed > self.max_recovery_time:
                logger.warning(
                    "Recovery strategy %s exceeded its %.2fs budget for %s (%.3fs)",
                    name, self.max_recovery_time, file_path, elapsed,
                )
                continue

            if result.success:
                result.strategy = name
                self._bump("recovered")
                logger.debug(
                    "Recovered %s in %s with %s (confidence %.1f)",
                    category.value, file_path, name, result.confidence,
                )
                return result
            logger.debug("Strategy %s not applicable to %s: %s", name, file_path, result.reason)

        return RecoveryResult(
            success=False,
            strategy="none",
            reason="all recovery strategies failed",
            suggestions=list(MANUAL_SUGGESTIONS.get(category, MANUAL_SUGGESTIONS[ErrorCategory.UNKNOWN_ERROR])),
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            stats: Dict[str, float] = dict(self._stats)
        total = stats["total"]
        stats["recovery_rate"] = stats["recovered"] / total if total else 0.0
        return stats

    def reset_stats(self) -> None:
        with self._lock:
            for key in self._stats:
                self._stats[key] = 0

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def auto_fix_brackets(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not self.auto_fix:
            return RecoveryResult(success=False, reason="auto-fix disabled")

        opened = content.count("{")
        closed = content.count("}")
        if opened == closed:
            return RecoveryResult(success=False, reason="no bracket issues detected")

        if opened > closed:
            missing = opened - closed
            fixed = content + "\n" + "}" * missing
            change = f"Appended {missing} closing brace(s)"
        else:
            extra = closed - opened
            fixed = content
            for _ in range(extra):
                idx = fixed.rfind("}")
                fixed = fixed[:idx] + fixed[idx + 1:]
            change = f"Removed {extra} trailing closing brace(s)"

        self._bump("auto_fixed")
        return RecoveryResult(success=True, fixed_content=fixed, changes=[change], confidence=0.7)

    def auto_fix_quotes(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not self.auto_fix:
            return RecoveryResult(success=False, reason="auto-fix disabled")

        changes: List[str] = []
        lines = []
        for number, line in enumerate(content.split("\n"), start=1):
            if line.count("'") % 2 == 1:
                line += "'"
                changes.append(f"Line {number}: Added closing single quote")
            if line.count('"') % 2 == 1:
                line += '"'
                changes.append(f"Line {number}: Added closing double quote")
            lines.append(line)

        if not changes:
            return RecoveryResult(success=False, reason="no quote issues detected")
        self._bump("auto_fixed")
        return RecoveryResult(success=True, fixed_content="\n".join(lines), changes=changes, confidence=0.6)

    def escape_quotes(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not self.auto_fix:
            return RecoveryResult(success=False, reason="auto-fix disabled")

        changes: List[str] = []
        lines = []
        for number, line in enumerate(content.split("\n"), start=1):
            for quote in ("'", '"'):
                if line.count(quote) % 2 == 1:
                    idx = line.rfind(quote)
                    line = line[:idx] + "\\" + line[idx:]
                    changes.append(f"Line {number}: Escaped unmatched {quote}")
            lines.append(line)

        if not changes:
            return RecoveryResult(success=False, reason="no quote issues detected")
        self._bump("auto_fixed")
        return RecoveryResult(success=True, fixed_content="\n".join(lines), changes=changes, confidence=0.5)

    def add_semicolons(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not self.auto_fix or language.lower() not in ("javascript", "typescript"):
            return RecoveryResult(success=False, reason="not applicable for this language")

        changes: List[str] = []
        lines = []
        for number, line in enumerate(content.split("\n"), start=1):
            trimmed = line.strip()
            if (
                trimmed
                and not trimmed.endswith((";", "{", "}"))
                and not trimmed.startswith(("//", "/*"))
                and (
                    _SEMICOLON_STATEMENT.match(trimmed)
                    or _TRAILING_CALL.search(trimmed)
                    or _MEMBER_ACCESS.search(trimmed)
                )
            ):
                line += ";"
                changes.append(f"Line {number}: Added semicolon")
            lines.append(line)

        if not changes:
            return RecoveryResult(success=False, reason="no semicolon issues detected")
        self._bump("auto_fixed")
        return RecoveryResult(success=True, fixed_content="\n".join(lines), changes=changes, confidence=0.8)

    def fix_encoding(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        fixed = re.sub(r"[^\x00-\x7F]", "?", content)
        if fixed == content:
            return RecoveryResult(success=False, reason="no encoding issues detected")
        return RecoveryResult(
            success=True,
            fixed_content=fixed,
            changes=["Replaced non-ASCII characters with ?"],
            confidence=0.5,
        )

    def reduce_content(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if len(content) < LARGE_CONTENT_THRESHOLD:
            return RecoveryResult(success=False, reason="file not too large")
        reduced = content[: len(content) // 2]
        return RecoveryResult(
            success=True,
            fixed_content=reduced,
            changes=[f"Reduced content size from {len(content)} to {len(reduced)} characters"],
            confidence=0.3,
        )

    def chunked_parsing(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not content.strip():
            return RecoveryResult(success=False, reason="no content to split")
        chunks = [content[i:i + CHUNK_SIZE] for i in range(0, len(content), CHUNK_SIZE)]
        self._bump("partially_parsed")
        return RecoveryResult(
            success=True,
            structure={"chunks": chunks, "chunk_size": CHUNK_SIZE},
            changes=[f"Split content into {len(chunks)} chunks"],
            confidence=0.4,
        )

    def fast_minimal_parse(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not content.strip():
            return RecoveryResult(success=False, reason="no content to analyze")
        lines = content.split("\n")
        comment_prefix = "#" if language == "python" else "//"
        structure = {
            "total_lines": len(lines),
            "code_lines": sum(1 for line in lines if line.strip()),
            "comment_lines": sum(1 for line in lines if line.strip().startswith(comment_prefix)),
        }
        return RecoveryResult(
            success=True,
            structure=structure,
            changes=["Performed minimal structure analysis"],
            confidence=0.2,
        )

    def partial_parse_sections(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not self.partial_parsing:
            return RecoveryResult(success=False, reason="partial parsing disabled")

        splitter = _SECTION_SPLITTERS.get(language.lower())
        pieces = splitter.split(content) if splitter else re.split(r"\n\s*\n", content)
        sections = []
        for piece in pieces:
            if len(piece.strip()) > 10:
                offset = content.find(piece)
                sections.append({
                    "line_start": content.count("\n", 0, max(offset, 0)) + 1,
                    "content": piece,
                })

        if not sections:
            return RecoveryResult(success=False, reason="no valid sections found")
        self._bump("partially_parsed")
        return RecoveryResult(
            success=True,
            structure={"sections": sections},
            changes=[f"Split into {len(sections)} parseable sections"],
            confidence=0.6,
        )

    def partial_parse_lines(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        comment_prefix = "#" if language == "python" else "//"
        valid = [
            {"line": number, "content": line.strip()}
            for number, line in enumerate(content.split("\n"), start=1)
            if line.strip() and not line.strip().startswith(comment_prefix)
        ]
        if not valid:
            return RecoveryResult(success=False, reason="no non-comment lines")
        self._bump("partially_parsed")
        return RecoveryResult(
            success=True,
            structure={"lines": valid},
            changes=[f"Extracted {len(valid)} valid lines"],
            confidence=0.3,
        )

    def structural_guess(self, error: str, file_path: str, content: str, language: str) -> RecoveryResult:
        if not content.strip():
            return RecoveryResult(success=False, reason="no content to analyze")
        guess = {
            "has_classes": bool(re.search(r"class\s+\w+", content)),
            "has_functions": bool(re.search(r"(function|def|func)\s+\w+", content)),
            "has_imports": bool(re.search(r"(import|from|#include)", content)),
            "estimated_complexity": min(10, max(1, len(content.split("\n")) // 100)),
        }
        return RecoveryResult(
            success=True,
            structure=guess,
            changes=["Generated structural guess"],
            confidence=0.2,
        )
