"""Heuristic structure extraction used when primary parsing is not possible.

Three strategies are tried in order: ``regex`` (per-language declaration
patterns), ``content_analysis`` (keyword statistics) and ``structure_guess``
(a single synthetic entry). A strategy only succeeds when it has something
to report, so blank input ends in the empty result.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import config
from .budget import run_inline
from .models import ClassInfo, FunctionInfo, ImportInfo, ParseResult

logger = logging.getLogger(__name__)

EMPTY_WARNING = "AST parsing failed, using empty structure"

STRATEGY_CONFIDENCE = {
    "regex": 0.5,
    "content_analysis": 0.3,
    "structure_guess": 0.2,
}

# ---------------------------------------------------------------------------
# Regex families
# ---------------------------------------------------------------------------

_PY_FUNC = re.compile(
    r"((?:^[ \t]*@[^\n]+\n)*)^([ \t]*)(async\s+)?def\s+(\w+)\s*\(([^)]*)\)[^:\n]*:",
    re.MULTILINE,
)
_PY_CLASS = re.compile(r"^class\s+(\w+)(?:\([^)]*\))?\s*:", re.MULTILINE)
_PY_IMPORT = re.compile(r"^\s*(?:from\s+(\S+)\s+import|import\s+([\w.]+))", re.MULTILINE)

_JS_FUNC_DECL = re.compile(
    r"(export\s+(?:default\s+)?)?(async\s+)?function\s*\*?\s*(\w+)\s*\(([^)]*)\)"
)
_JS_FUNC_EXPR = re.compile(
    r"(export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(async\s+)?(?:function\b[^(]*\(([^)]*)\)|\(([^)]*)\)\s*=>|(\w+)\s*=>)"
)
_JS_CLASS = re.compile(r"(export\s+(?:default\s+)?)?(?:abstract\s+)?class\s+(\w+)")
_JS_IMPORT = re.compile(r"import\s+(?:[\s\S]*?\s+from\s+)?['\"`]([^'\"`]+)['\"`]")
_JS_REQUIRE = re.compile(r"require\(\s*['\"`]([^'\"`]+)['\"`]\s*\)")
_JS_EXPORT_LIST = re.compile(r"export\s*\{([^}]*)\}")
_JS_ROUTE = re.compile(r"(\w+)\.(get|post|put|delete|patch|all)\(\s*['\"`]([^'\"`]+)['\"`]")
_TS_INTERFACE = re.compile(
    r"(export\s+)?interface\s+(\w+)(?:\s+extends\s+[^{]+)?\s*\{([^}]*)\}"
)
_TS_PROPERTY = re.compile(r"^\s*(?:readonly\s+)?(\w+)\??\s*[:(]", re.MULTILINE)

_GO_FUNC = re.compile(
    r"func\s+(?:\(\s*(?:\w+\s+)?\*?\s*(\w+)(?:\[[^\]]*\])?\s*\)\s+)?(\w+)\s*\(([^)]*)\)"
)
_GO_STRUCT = re.compile(r"type\s+(\w+)\s+struct\b")
_GO_INTERFACE = re.compile(r"type\s+(\w+)\s+interface\s*\{([^}]*)\}")
_GO_IMPORT = re.compile(r"import\s+(?:\(\s*([^)]+)\)|(?:[\w.]+\s+)?\"([^\"]+)\")")
_GO_ROUTE = re.compile(r"(\w+)\.(HandleFunc|Handle|GET|POST|PUT|DELETE|PATCH)\(\s*\"([^\"]+)\"")

_GENERIC_FUNC = [
    re.compile(r"function\s+(\w+)"),
    re.compile(r"def\s+(\w+)"),
    re.compile(r"func\s+(\w+)"),
    re.compile(r"(\w+)\s*\([^)]*\)\s*\{"),
]
_GENERIC_CLASS = [
    re.compile(r"class\s+(\w+)"),
    re.compile(r"struct\s+(\w+)"),
    re.compile(r"type\s+(\w+)"),
]
_CONTROL_KEYWORDS = {"if", "for", "while", "switch", "catch", "with", "return", "function"}


def _line_of(content: str, index: int) -> int:
    return content.count("\n", 0, index) + 1


def _split_params(raw: str) -> List[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


class FallbackParser:
    """Bounded heuristic extractor with a per-(language, size bucket) strategy hint."""

    def __init__(self, max_fallback_time: float = config.FALLBACK_STRATEGY_TIMEOUT):
        self.max_fallback_time = max_fallback_time
        self._strategy_cache: Dict[Tuple[str, int], str] = {}
        self._cache_lock = threading.Lock()
        self._strategies: Dict[str, Callable[[str, str, str], Optional[ParseResult]]] = {
            "regex": self.regex_extract,
            "content_analysis": self.content_analysis,
            "structure_guess": self.structure_guess,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(
        self,
        content: str,
        language: str,
        file_path: str = "",
        error: Optional[str] = None,
    ) -> ParseResult:
        """Return the first successful strategy's result or the empty result."""
        for name in self._ordered_strategies(content, language):
            try:
                result, elapsed = run_inline(self._strategies[name], content, language, file_path)
            except Exception as exc:
                logger.warning("Fallback strategy '%s' failed for %s: %s", name, file_path, exc)
                continue
            if elapsed > self.max_fallback_time:
                logger.warning(
                    "Fallback strategy '%s' exceeded its %.2fs budget for %s (%.3fs)",
                    name, self.max_fallback_time, file_path, elapsed,
                )
                continue
            if result is None:
                continue

            self._remember(content, language, name)
            logger.debug("Fallback strategy '%s' succeeded for %s", name, file_path)
            return ParseResult(
                success=True,
                ast=result.ast,
                functions=result.functions,
                classes=result.classes,
                imports=result.imports,
                complexity=max(1, result.complexity),
                error=error,
                from_fallback=True,
                strategy=name,
                confidence=STRATEGY_CONFIDENCE[name],
            )

        return self.empty_result(error)

    @staticmethod
    def empty_result(error: Optional[str]) -> ParseResult:
        return ParseResult(
            success=True,
            complexity=1,
            error=error or "Unknown error",
            from_fallback=True,
            strategy="empty",
            warning=EMPTY_WARNING,
            confidence=0.0,
        )

    def cached_strategy(self, content: str, language: str) -> Optional[str]:
        with self._cache_lock:
            return self._strategy_cache.get(self._bucket(content, language))

    def clear_strategy_cache(self) -> None:
        with self._cache_lock:
            self._strategy_cache.clear()

    # ------------------------------------------------------------------
    # Strategy cache (performance hint only)
    # ------------------------------------------------------------------

    @staticmethod
    def _bucket(content: str, language: str) -> Tuple[str, int]:
        return (language, len(content).bit_length())

    def _ordered_strategies(self, content: str, language: str) -> List[str]:
        order = list(self._strategies)
        hint = self.cached_strategy(content, language)
        if hint in order:
            order.remove(hint)
            order.insert(0, hint)
        return order

    def _remember(self, content: str, language: str, name: str) -> None:
        with self._cache_lock:
            self._strategy_cache[self._bucket(content, language)] = name

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def regex_extract(self, content: str, language: str, file_path: str = "") -> Optional[ParseResult]:
        lang = (language or "").lower()
        if lang == "python":
            result = self._regex_python(content)
        elif lang in ("javascript", "typescript"):
            result = self._regex_javascript(content, lang == "typescript")
        elif lang == "go":
            result = self._regex_go(content)
        else:
            result = self._regex_generic(content)

        if not (result.functions or result.classes or result.imports):
            return None
        return result

    def content_analysis(self, content: str, language: str, file_path: str = "") -> Optional[ParseResult]:
        lines = content.split("\n")
        code_lines = [
            line for line in lines
            if line.strip() and not line.strip().startswith(("//", "#"))
        ]
        if not code_lines:
            return None

        indented = sum(1 for line in lines if line.startswith(("  ", "\t")))
        braces = len(re.findall(r"[{}]", content))
        keywords = len(re.findall(r"function|def|func", content))
        complexity = max(1, int(keywords * 0.5 + braces * 0.1 + (indented / len(lines)) * 5))

        functions = [
            FunctionInfo(
                name=f"detected_function_{i + 1}",
                line_start=int((i + 1) * (len(lines) / keywords)),
            )
            for i in range(keywords)
        ]
        return ParseResult(
            success=True,
            ast={"total_lines": len(lines), "code_lines": len(code_lines)},
            functions=functions,
            complexity=complexity,
        )

    def structure_guess(self, content: str, language: str, file_path: str = "") -> Optional[ParseResult]:
        if not content.strip():
            return None
        functions = [FunctionInfo(name="main_content", line_start=1)]
        complexity = 1
        if len(content) > 10_000:
            complexity = 5
            functions.append(FunctionInfo(
                name="large_file_content",
                line_start=len(content.split("\n")) // 2,
                complexity=3,
            ))
        return ParseResult(success=True, functions=functions, complexity=complexity)

    # ------------------------------------------------------------------
    # Language families
    # ------------------------------------------------------------------

    def _regex_python(self, content: str) -> ParseResult:
        functions: List[FunctionInfo] = []
        methods: List[Tuple[int, str]] = []
        for match in _PY_FUNC.finditer(content):
            decorators_raw, indent, is_async, name, params = match.groups()
            if indent:
                methods.append((match.start(4), name))
                continue
            functions.append(FunctionInfo(
                name=name,
                line_start=_line_of(content, match.start(4)),
                exported=not name.startswith("_"),
                is_async=bool(is_async),
                decorators=[d.strip() for d in decorators_raw.splitlines() if d.strip()],
                parameters=_split_params(params),
            ))

        classes = []
        class_starts = []
        for match in _PY_CLASS.finditer(content):
            classes.append(ClassInfo(name=match.group(1), exported=not match.group(1).startswith("_")))
            class_starts.append(match.start())
        for pos, name in methods:
            owner = [i for i, start in enumerate(class_starts) if start < pos]
            if owner:
                classes[owner[-1]].methods.append(name)

        imports = []
        for match in _PY_IMPORT.finditer(content):
            if match.group(1):
                imports.append(ImportInfo(source=match.group(1), kind="from"))
            else:
                imports.append(ImportInfo(source=match.group(2), kind="import"))

        return ParseResult(
            success=True,
            ast={"language": "python"},
            functions=functions,
            classes=classes,
            imports=imports,
            complexity=max(1, int(len(functions) * 0.2 + len(classes) * 0.4)),
        )

    def _regex_javascript(self, content: str, typescript: bool) -> ParseResult:
        exported_names = set()
        for match in _JS_EXPORT_LIST.finditer(content):
            for item in match.group(1).split(","):
                name = item.strip().split(" as ")[0].strip()
                if name:
                    exported_names.add(name)

        found: List[Tuple[int, FunctionInfo]] = []
        for match in _JS_FUNC_DECL.finditer(content):
            export, is_async, name, params = match.groups()
            found.append((match.start(), FunctionInfo(
                name=name,
                line_start=_line_of(content, match.start()),
                exported=bool(export) or name in exported_names,
                is_async=bool(is_async),
                parameters=_split_params(params),
            )))
        for match in _JS_FUNC_EXPR.finditer(content):
            export, name, is_async, fn_params, arrow_params, single = match.groups()
            params = fn_params if fn_params is not None else arrow_params
            found.append((match.start(), FunctionInfo(
                name=name,
                line_start=_line_of(content, match.start()),
                exported=bool(export) or name in exported_names,
                is_async=bool(is_async),
                parameters=_split_params(params) if params is not None else [single],
            )))
        functions = [fn for _, fn in sorted(found, key=lambda item: item[0])]

        classes = [
            ClassInfo(name=m.group(2), exported=bool(m.group(1)) or m.group(2) in exported_names)
            for m in _JS_CLASS.finditer(content)
        ]

        imports = [ImportInfo(source=m.group(1), kind="es6") for m in _JS_IMPORT.finditer(content)]
        imports += [ImportInfo(source=m.group(1), kind="require") for m in _JS_REQUIRE.finditer(content)]

        routes = [
            {"object": m.group(1), "method": m.group(2), "path": m.group(3)}
            for m in _JS_ROUTE.finditer(content)
        ]
        interfaces: List[Dict[str, Any]] = []
        if typescript:
            for m in _TS_INTERFACE.finditer(content):
                interfaces.append({
                    "name": m.group(2),
                    "properties": _TS_PROPERTY.findall(m.group(3)),
                    "exported": bool(m.group(1)),
                })

        return ParseResult(
            success=True,
            ast={
                "language": "typescript" if typescript else "javascript",
                "routes": routes,
                "interfaces": interfaces,
            },
            functions=functions,
            classes=classes,
            imports=imports,
            complexity=max(1, int(len(functions) * 0.3 + len(classes) * 0.5)),
        )

    def _regex_go(self, content: str) -> ParseResult:
        structs = {
            m.group(1): ClassInfo(name=m.group(1), exported=m.group(1)[:1].isupper())
            for m in _GO_STRUCT.finditer(content)
        }

        functions = []
        for match in _GO_FUNC.finditer(content):
            receiver, name, params = match.groups()
            if receiver and receiver in structs:
                structs[receiver].methods.append(name)
            functions.append(FunctionInfo(
                name=name,
                line_start=_line_of(content, match.start()),
                exported=name[:1].isupper(),
                parameters=_split_params(params),
            ))

        imports = []
        for match in _GO_IMPORT.finditer(content):
            grouped, single = match.groups()
            if grouped:
                imports.extend(
                    ImportInfo(source=src, kind="package")
                    for src in re.findall(r"\"([^\"]+)\"", grouped)
                )
            elif single:
                imports.append(ImportInfo(source=single, kind="package"))

        routes = [
            {"object": m.group(1), "method": m.group(2).lower(), "path": m.group(3)}
            for m in _GO_ROUTE.finditer(content)
        ]
        interfaces = [
            {
                "name": m.group(1),
                "properties": re.findall(r"^\s*(\w+)\s*\(", m.group(2), re.MULTILINE),
                "exported": m.group(1)[:1].isupper(),
            }
            for m in _GO_INTERFACE.finditer(content)
        ]

        return ParseResult(
            success=True,
            ast={"language": "go", "routes": routes, "interfaces": interfaces},
            functions=functions,
            classes=list(structs.values()),
            imports=imports,
            complexity=max(1, int(len(functions) * 0.3)),
        )

    def _regex_generic(self, content: str) -> ParseResult:
        functions: List[FunctionInfo] = []
        for pattern in _GENERIC_FUNC:
            matches = [m for m in pattern.finditer(content) if m.group(1) not in _CONTROL_KEYWORDS]
            if matches:
                functions = [
                    FunctionInfo(name=m.group(1), line_start=_line_of(content, m.start()))
                    for m in matches
                ]
                break

        classes: List[ClassInfo] = []
        for pattern in _GENERIC_CLASS:
            matches = list(pattern.finditer(content))
            if matches:
                classes = [ClassInfo(name=m.group(1)) for m in matches]
                break

        return ParseResult(
            success=True,
            functions=functions,
            classes=classes,
            complexity=max(1, len(functions) + len(classes)),
        )
