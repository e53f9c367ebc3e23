"""Primary syntax parsers and the language -> parser registry.

Python sources go through the built-in ``ast`` module, which is strict and
reports precise syntax errors. JavaScript, TypeScript and Go use Tree-sitter
grammars; because Tree-sitter is error-tolerant, a tree containing ``ERROR``
or missing nodes is reported as a parse failure so the orchestrator can
classify and recover from it.
"""

from __future__ import annotations

import ast
import importlib
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from tree_sitter import Language, Parser as TSParser

from .models import ClassInfo, FunctionInfo, ImportInfo, ParseResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
}

HTTP_METHODS = ("get", "post", "put", "delete", "patch")


def detect_language(path: str) -> Optional[str]:
    return LANGUAGE_MAP.get(Path(path).suffix.lower())


class ParserError(Exception):
    """Raised by a primary parser when the source cannot be parsed."""


# ===================================================================
# Abstract Parser Interface
# ===================================================================

class Parser(ABC):
    """Abstract base class for all primary parsers."""

    @abstractmethod
    def parse(self, content: str, path: str = "") -> ParseResult:
        """Parse *content* into a successful :class:`ParseResult` or raise."""
        ...

    @abstractmethod
    def supports_language(self, language: str) -> bool:
        """Return True if this parser can handle *language*."""
        ...


# ===================================================================
# Python (built-in ast)
# ===================================================================

_PY_DECISION_NODES = (
    ast.If, ast.For, ast.AsyncFor, ast.While, ast.IfExp,
    ast.ExceptHandler, ast.Assert,
)


def _py_complexity(node: ast.AST) -> int:
    score = 1
    for child in ast.walk(node):
        if isinstance(child, _PY_DECISION_NODES):
            score += 1
        elif isinstance(child, ast.BoolOp):
            score += len(child.values) - 1
        elif isinstance(child, ast.comprehension):
            score += 1 + len(child.ifs)
        elif child.__class__.__name__ == "match_case":
            score += 1
    return score


class PythonAstParser(Parser):
    """Strict Python parser built on the standard ``ast`` module."""

    def supports_language(self, language: str) -> bool:
        return language == "python"

    def parse(self, content: str, path: str = "") -> ParseResult:
        try:
            tree = ast.parse(content, filename=path or "<unknown>")
        except SyntaxError as exc:
            raise ParserError(f"SyntaxError: {exc.msg} at line {exc.lineno}") from exc
        except ValueError as exc:
            raise ParserError(f"Encoding error: {exc}") from exc

        public = self._declared_all(tree)
        functions: List[FunctionInfo] = []
        classes: List[ClassInfo] = []

        for stmt in tree.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                functions.append(self._function_info(stmt, public))
            elif isinstance(stmt, ast.ClassDef):
                methods = [
                    n.name for n in stmt.body
                    if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))
                ]
                classes.append(ClassInfo(
                    name=stmt.name,
                    methods=methods,
                    exported=self._is_public(stmt.name, public),
                ))

        imports: List[ImportInfo] = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                imports.extend(ImportInfo(source=alias.name, kind="import") for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                source = "." * node.level + (node.module or "")
                if source:
                    imports.append(ImportInfo(source=source, kind="from"))

        return ParseResult(
            success=True,
            ast={
                "language": "python",
                "docstring": ast.get_docstring(tree) or "",
                "statements": len(tree.body),
            },
            functions=functions,
            classes=classes,
            imports=imports,
            complexity=_py_complexity(tree),
        )

    def _function_info(
        self,
        node: Union[ast.FunctionDef, ast.AsyncFunctionDef],
        public: Optional[Set[str]],
    ) -> FunctionInfo:
        params = []
        for arg in node.args.posonlyargs + node.args.args + node.args.kwonlyargs:
            if arg.annotation is not None:
                params.append(f"{arg.arg}: {ast.unparse(arg.annotation)}")
            else:
                params.append(arg.arg)
        return FunctionInfo(
            name=node.name,
            line_start=node.lineno,
            complexity=_py_complexity(node),
            exported=self._is_public(node.name, public),
            is_async=isinstance(node, ast.AsyncFunctionDef),
            decorators=[f"@{ast.unparse(d)}" for d in node.decorator_list],
            parameters=params,
        )

    @staticmethod
    def _declared_all(tree: ast.Module) -> Optional[Set[str]]:
        for stmt in tree.body:
            if isinstance(stmt, ast.Assign) and any(
                isinstance(t, ast.Name) and t.id == "__all__" for t in stmt.targets
            ):
                if isinstance(stmt.value, (ast.List, ast.Tuple)):
                    return {
                        e.value for e in stmt.value.elts
                        if isinstance(e, ast.Constant) and isinstance(e.value, str)
                    }
        return None

    @staticmethod
    def _is_public(name: str, public: Optional[Set[str]]) -> bool:
        if public is not None:
            return name in public
        return not name.startswith("_")


# ===================================================================
# Tree-sitter (JavaScript / TypeScript / Go)
# ===================================================================

_TS_DECISION_NODES: Dict[str, Set[str]] = {
    "javascript": {
        "if_statement", "for_statement", "for_in_statement", "while_statement",
        "do_statement", "switch_case", "catch_clause", "ternary_expression",
    },
    "go": {
        "if_statement", "for_statement", "expression_case", "type_case",
        "communication_case",
    },
}
_TS_DECISION_NODES["typescript"] = _TS_DECISION_NODES["javascript"]


def _text(node: Any) -> str:
    return node.text.decode("utf-8", errors="replace") if node is not None else ""


def _unquote(raw: str) -> str:
    return raw.strip().strip("'\"`")


def _iter_nodes(root: Any) -> Iterator[Any]:
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def _ts_complexity(node: Any, language: str) -> int:
    decisions = _TS_DECISION_NODES.get(language, set())
    score = 1
    for child in _iter_nodes(node):
        if child.type in decisions:
            score += 1
        elif child.type == "binary_expression":
            operator = child.child_by_field_name("operator")
            if operator is not None and operator.type in ("&&", "||", "??"):
                score += 1
    return score


class TreeSitterParser(Parser):
    """Multi-language parser built on Tree-sitter grammars.

    Grammars are loaded lazily; a missing grammar package makes the parser
    unavailable for that language rather than failing the whole registry.
    A fresh Tree-sitter parser is created per call so instances can be
    shared across worker threads.
    """

    # language -> (module, factory function)
    _GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
        "javascript": ("tree_sitter_javascript", "language"),
        "typescript": ("tree_sitter_typescript", "language_typescript"),
        "tsx": ("tree_sitter_typescript", "language_tsx"),
        "go": ("tree_sitter_go", "language"),
    }

    def __init__(self, language: str) -> None:
        self.language = language
        self._languages: Dict[str, Optional[Language]] = {}
        self._lock = threading.Lock()

    def _load_grammar(self, grammar: str) -> Optional[Language]:
        with self._lock:
            if grammar in self._languages:
                return self._languages[grammar]
            loaded: Optional[Language] = None
            mod_name, factory = self._GRAMMAR_MODULES.get(grammar, ("", ""))
            if not mod_name:
                logger.warning("No grammar module mapped for language '%s'", grammar)
            else:
                try:
                    mod = importlib.import_module(mod_name)
                    loaded = Language(getattr(mod, factory)())
                    logger.debug("Loaded tree-sitter grammar for %s", grammar)
                except ImportError:
                    logger.warning(
                        "Grammar package '%s' not installed for language '%s'. "
                        "Install with: pip install %s",
                        mod_name, grammar, mod_name.replace("_", "-"),
                    )
                except (AttributeError, TypeError, ValueError) as exc:
                    logger.warning("Could not load tree-sitter grammar for %s: %s", grammar, exc)
            self._languages[grammar] = loaded
            return loaded

    def supports_language(self, language: str) -> bool:
        return language == self.language and self._load_grammar(language) is not None

    def parse(self, content: str, path: str = "") -> ParseResult:
        grammar = "tsx" if path.endswith(".tsx") else self.language
        ts_language = self._load_grammar(grammar)
        if ts_language is None:
            raise ParserError(f"Parse error: no tree-sitter grammar for {grammar}")

        tree = TSParser(ts_language).parse(content.encode("utf-8"))
        root = tree.root_node
        if root.has_error:
            raise ParserError(self._describe_error(root))

        if self.language == "go":
            functions, classes, imports, summary = self._extract_go(root)
        else:
            functions, classes, imports, summary = self._extract_js(root)

        summary["language"] = self.language
        return ParseResult(
            success=True,
            ast=summary,
            functions=functions,
            classes=classes,
            imports=imports,
            complexity=_ts_complexity(root, self.language),
        )

    @staticmethod
    def _describe_error(root: Any) -> str:
        for node in _iter_nodes(root):
            line = node.start_point[0] + 1
            if node.is_missing:
                return f"SyntaxError: Missing {node.type} at line {line}"
            if node.type == "ERROR":
                token = (_text(node).split() or ["<eof>"])[0][:20]
                return f"SyntaxError: Unexpected token {token} at line {line}"
        return "SyntaxError: Unexpected token"

    # ------------------------------------------------------------------
    # JavaScript / TypeScript
    # ------------------------------------------------------------------

    def _extract_js(self, root: Any):
        functions: List[FunctionInfo] = []
        classes: List[ClassInfo] = []
        imports: List[ImportInfo] = []
        interfaces: List[Dict[str, Any]] = []
        routes: List[Dict[str, str]] = []
        exported_names: Set[str] = set()

        def declare(node: Any, exported: bool) -> None:
            if node.type in ("function_declaration", "generator_function_declaration"):
                functions.append(self._js_function(node, _text(node.child_by_field_name("name")), exported))
            elif node.type in ("class_declaration", "abstract_class_declaration"):
                body = node.child_by_field_name("body")
                methods = []
                if body is not None:
                    methods = [
                        _text(m.child_by_field_name("name")) for m in body.named_children
                        if m.type == "method_definition"
                    ]
                classes.append(ClassInfo(
                    name=_text(node.child_by_field_name("name")),
                    methods=methods,
                    exported=exported,
                ))
            elif node.type in ("lexical_declaration", "variable_declaration"):
                for declarator in node.named_children:
                    if declarator.type != "variable_declarator":
                        continue
                    value = declarator.child_by_field_name("value")
                    if value is not None and value.type in (
                        "arrow_function", "function_expression", "function",
                    ):
                        name = _text(declarator.child_by_field_name("name"))
                        functions.append(self._js_function(value, name, exported, line_node=declarator))
            elif node.type == "interface_declaration":
                body = node.child_by_field_name("body")
                props = []
                if body is not None:
                    props = [
                        _text(p.child_by_field_name("name")) for p in body.named_children
                        if p.type in ("property_signature", "method_signature")
                    ]
                interfaces.append({
                    "name": _text(node.child_by_field_name("name")),
                    "properties": props,
                    "exported": exported,
                })

        for child in root.named_children:
            if child.type == "export_statement":
                declaration = child.child_by_field_name("declaration")
                if declaration is not None:
                    declare(declaration, True)
                for spec in _iter_nodes(child):
                    if spec.type == "export_specifier":
                        exported_names.add(_text(spec.child_by_field_name("name")))
            else:
                declare(child, False)

        for node in _iter_nodes(root):
            if node.type == "import_statement":
                source = node.child_by_field_name("source")
                if source is not None:
                    imports.append(ImportInfo(source=_unquote(_text(source)), kind="es6"))
            elif node.type == "call_expression":
                self._js_call(node, imports, routes)

        for fn in functions:
            fn.exported = fn.exported or fn.name in exported_names
        for cls in classes:
            cls.exported = cls.exported or cls.name in exported_names

        return functions, classes, imports, {"routes": routes, "interfaces": interfaces}

    def _js_function(self, node: Any, name: str, exported: bool, line_node: Any = None) -> FunctionInfo:
        params_node = node.child_by_field_name("parameters") or node.child_by_field_name("parameter")
        params: List[str] = []
        if params_node is not None:
            if params_node.type == "identifier":
                params = [_text(params_node)]
            else:
                params = [_text(p) for p in params_node.named_children]
        return FunctionInfo(
            name=name or "anonymous",
            line_start=(line_node or node).start_point[0] + 1,
            complexity=_ts_complexity(node, self.language),
            exported=exported,
            is_async=any(c.type == "async" for c in node.children),
            parameters=params,
        )

    @staticmethod
    def _js_call(node: Any, imports: List[ImportInfo], routes: List[Dict[str, str]]) -> None:
        func = node.child_by_field_name("function")
        args = node.child_by_field_name("arguments")
        if func is None or args is None:
            return
        first = args.named_children[0] if args.named_children else None
        if func.type == "identifier" and _text(func) == "require":
            if first is not None and first.type in ("string", "template_string"):
                imports.append(ImportInfo(source=_unquote(_text(first)), kind="require"))
        elif func.type == "member_expression":
            prop = _text(func.child_by_field_name("property"))
            if prop in HTTP_METHODS + ("all", "use") and first is not None and first.type == "string":
                routes.append({
                    "object": _text(func.child_by_field_name("object")),
                    "method": prop,
                    "path": _unquote(_text(first)),
                })

    # ------------------------------------------------------------------
    # Go
    # ------------------------------------------------------------------

    def _extract_go(self, root: Any):
        functions: List[FunctionInfo] = []
        structs: Dict[str, ClassInfo] = {}
        imports: List[ImportInfo] = []
        routes: List[Dict[str, str]] = []
        interfaces: List[Dict[str, Any]] = []
        methods: List[Tuple[str, str]] = []

        for child in root.named_children:
            if child.type == "function_declaration":
                name = _text(child.child_by_field_name("name"))
                functions.append(self._go_function(child, name))
            elif child.type == "method_declaration":
                name = _text(child.child_by_field_name("name"))
                receiver = _text(child.child_by_field_name("receiver"))
                match = re.search(r"\*?\s*(\w+)(?:\[[^\]]*\])?\s*\)$", receiver)
                if match:
                    methods.append((match.group(1), name))
                functions.append(self._go_function(child, name))
            elif child.type == "type_declaration":
                for spec in child.named_children:
                    if spec.type != "type_spec":
                        continue
                    type_name = _text(spec.child_by_field_name("name"))
                    type_node = spec.child_by_field_name("type")
                    if type_node is not None and type_node.type == "struct_type":
                        structs[type_name] = ClassInfo(name=type_name, exported=type_name[:1].isupper())
                    elif type_node is not None and type_node.type == "interface_type":
                        interfaces.append({
                            "name": type_name,
                            "properties": [
                                _text(m.child_by_field_name("name")) for m in type_node.named_children
                                if m.child_by_field_name("name") is not None
                            ],
                            "exported": type_name[:1].isupper(),
                        })
            elif child.type == "import_declaration":
                for spec in _iter_nodes(child):
                    if spec.type == "import_spec":
                        path_node = spec.child_by_field_name("path")
                        if path_node is not None:
                            imports.append(ImportInfo(source=_unquote(_text(path_node)), kind="package"))

        for owner, name in methods:
            if owner in structs:
                structs[owner].methods.append(name)

        for node in _iter_nodes(root):
            if node.type != "call_expression":
                continue
            func = node.child_by_field_name("function")
            args = node.child_by_field_name("arguments")
            if func is None or func.type != "selector_expression" or args is None:
                continue
            field_name = _text(func.child_by_field_name("field"))
            first = args.named_children[0] if args.named_children else None
            if first is None or first.type not in ("interpreted_string_literal", "raw_string_literal"):
                continue
            if field_name in ("HandleFunc", "Handle") or field_name.lower() in HTTP_METHODS:
                routes.append({
                    "object": _text(func.child_by_field_name("operand")),
                    "method": field_name.lower(),
                    "path": _unquote(_text(first)),
                })

        summary = {"routes": routes, "interfaces": interfaces}
        return functions, list(structs.values()), imports, summary

    def _go_function(self, node: Any, name: str) -> FunctionInfo:
        params_node = node.child_by_field_name("parameters")
        params = []
        if params_node is not None:
            params = [_text(p) for p in params_node.named_children if p.type.endswith("parameter_declaration")]
        return FunctionInfo(
            name=name,
            line_start=node.start_point[0] + 1,
            complexity=_ts_complexity(node, "go"),
            exported=name[:1].isupper(),
            parameters=params,
        )


# ===================================================================
# Registry
# ===================================================================

class ParserRegistry:
    """Maps a language identifier to its primary parser."""

    def __init__(self) -> None:
        self._parsers: Dict[str, Parser] = {}

    def register(self, language: str, parser: Parser) -> None:
        self._parsers[language] = parser

    def get_parser(self, language: str) -> Optional[Parser]:
        parser = self._parsers.get(language)
        if parser is None or not parser.supports_language(language):
            return None
        return parser

    def languages(self) -> List[str]:
        return sorted(self._parsers)

    @classmethod
    def default(cls) -> "ParserRegistry":
        registry = cls()
        registry.register("python", PythonAstParser())
        for language in ("javascript", "typescript", "go"):
            registry.register(language, TreeSitterParser(language))
        return registry
