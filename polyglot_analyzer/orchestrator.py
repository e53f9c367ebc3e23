"""Parse orchestrator: primary parser, then error recovery, then fallback."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from . import config
from .budget import BudgetExceeded, run_in_thread
from .error_recovery import ErrorRecovery, classify_error
from .fallback import FallbackParser
from .models import ParseResult, RecoveryResult
from .parser import Parser, ParserError

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Dict[str, Any]], None]

RECOVERED_WARNING = "Primary parsing failed; structure extracted from recovered content"


class ParseOrchestrator:
    """Coordinates the primary parser, error recovery and fallback extraction.

    ``parse`` never raises. Stages run strictly in order and each is bounded
    by its own time budget; a primary overrun is classified like any other
    error. The primary parser gets a fresh thread per call, so its budget
    starts when parsing starts.
    Transitions are logged and reported through the optional ``on_event``
    callback as ``error_recovered``, ``fallback_used`` or ``empty_result``.
    """

    def __init__(
        self,
        recovery: Optional[ErrorRecovery] = None,
        fallback: Optional[FallbackParser] = None,
        primary_timeout: float = config.PRIMARY_PARSE_TIMEOUT,
        on_event: Optional[EventCallback] = None,
    ):
        self.recovery = recovery or ErrorRecovery()
        self.fallback = fallback or FallbackParser()
        self.primary_timeout = primary_timeout
        self.on_event = on_event
        self._lock = threading.Lock()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "primary_successes": 0,
            "primary_failures": 0,
            "timeouts": 0,
            "recoveries": 0,
            "fallbacks": 0,
            "empty_results": 0,
        }

    def parse(
        self,
        file: str,
        content: str,
        language: str,
        primary_parser: Optional[Parser],
    ) -> ParseResult:
        try:
            return self._parse(str(file), content or "", language, primary_parser)
        except Exception as exc:
            logger.exception("Unexpected orchestrator failure for %s", file)
            return self.fallback.empty_result(f"{type(exc).__name__}: {exc}")

    def _parse(
        self,
        path: str,
        content: str,
        language: str,
        primary_parser: Optional[Parser],
    ) -> ParseResult:
        result, error = self._run_primary(path, content, language, primary_parser)
        if result is not None:
            self._bump("primary_successes")
            return result

        self._bump("primary_failures")
        category = classify_error(error, content)
        logger.debug("Primary parse of %s failed (%s): %s", path, category.value, error)

        recovery = self.recovery.recover(category, error, path, content, language)
        if recovery.success:
            return self._from_recovery(path, content, language, error, category.value, recovery)

        result = self.fallback.extract(content, language, path, error=error)
        result = replace(result, recovery={
            "category": category.value,
            "strategy": "none",
            "suggestions": recovery.suggestions,
        })

        if result.strategy == "empty":
            self._bump("empty_results")
            logger.warning("No structure could be extracted from %s: %s", path, error)
            self._emit("empty_result", {"file": path, "language": language, "error": error})
        else:
            self._bump("fallbacks")
            logger.info("Fallback strategy '%s' used for %s", result.strategy, path)
            self._emit("fallback_used", {
                "file": path,
                "language": language,
                "strategy": result.strategy,
                "error": error,
            })
        return result

    def _run_primary(self, path: str, content: str, language: str, parser: Optional[Parser]):
        if parser is None:
            return None, f"no parser available for {language}"

        try:
            raw = run_in_thread(parser.parse, self.primary_timeout, content, path, name="primary-parse")
        except BudgetExceeded:
            self._bump("timeouts")
            logger.warning("Primary parser timed out after %.1fs for %s", self.primary_timeout, path)
            return None, f"Timeout after {self.primary_timeout}s waiting for primary parsing"
        except ParserError as exc:
            return None, str(exc)
        except Exception as exc:
            return None, f"{type(exc).__name__}: {exc}"

        if not raw.success:
            return None, raw.error or "Parse error: primary parser reported failure"
        return replace(raw, strategy="primary", from_fallback=False, confidence=1.0), None

    def _from_recovery(
        self,
        path: str,
        content: str,
        language: str,
        error: Optional[str],
        category: str,
        recovery: RecoveryResult,
    ) -> ParseResult:
        # Recovered content is a structural signal only; it never goes back
        # through the primary parser.
        source = recovery.fixed_content if recovery.fixed_content is not None else content
        extracted = self.fallback.extract(source, language, path, error=error)
        has_structure = extracted.strategy != "empty"

        self._bump("recoveries")
        logger.info(
            "Recovered %s in %s using %s (confidence %.1f)",
            category, path, recovery.strategy, recovery.confidence,
        )
        self._emit("error_recovered", {
            "file": path,
            "language": language,
            "category": category,
            "strategy": recovery.strategy,
            "confidence": recovery.confidence,
        })
        return ParseResult(
            success=True,
            ast=extracted.ast if has_structure else None,
            functions=extracted.functions if has_structure else [],
            classes=extracted.classes if has_structure else [],
            imports=extracted.imports if has_structure else [],
            complexity=extracted.complexity if has_structure else 1,
            error=error,
            from_fallback=True,
            strategy=recovery.strategy,
            warning=RECOVERED_WARNING,
            confidence=recovery.confidence,
            recovery={
                "category": category,
                "strategy": recovery.strategy,
                "changes": recovery.changes,
                "confidence": recovery.confidence,
                "fixed_content": recovery.fixed_content,
                "extraction": extracted.strategy,
            },
        )

    # ------------------------------------------------------------------
    # Events and stats
    # ------------------------------------------------------------------

    def _emit(self, name: str, payload: Dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(name, payload)
        except Exception as exc:
            logger.warning("Event callback failed for '%s': %s", name, exc)

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = self._empty_stats()
