"""Per-language detection of externally visible interfaces.

Detectors read the structural facts of a successful :class:`ParseResult`
(functions, decorators, parameters and the ``routes``/``interfaces`` lists
of its AST summary) and describe REST endpoints and TypeScript interfaces.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import InterfaceDescriptor, ParseResult, SourceFile
from .parser import HTTP_METHODS

logger = logging.getLogger(__name__)

_PY_ROUTE_DECORATOR = re.compile(
    r"@(?:[\w.]*\.)?(route|get|post|put|delete|patch|api_route)\(\s*(?:path\s*=\s*)?['\"]([^'\"]*)['\"]"
)


def _summary_list(result: ParseResult, name: str) -> List[dict]:
    if isinstance(result.ast, dict):
        value = result.ast.get(name) or []
        return [item for item in value if isinstance(item, dict)]
    return []


class InterfaceDetector(ABC):
    language: str = ""

    @abstractmethod
    def extract_interfaces(self, result: ParseResult, file: SourceFile) -> List[InterfaceDescriptor]:
        ...


class PythonInterfaceDetector(InterfaceDetector):
    """Flask ``@app.route`` and FastAPI ``@app.get``-style handlers."""

    language = "python"

    def extract_interfaces(self, result: ParseResult, file: SourceFile) -> List[InterfaceDescriptor]:
        found = []
        for func in result.functions:
            for decorator in func.decorators:
                match = _PY_ROUTE_DECORATOR.search(decorator)
                if not match:
                    continue
                verb, path = match.groups()
                framework = "flask" if verb == "route" else "fastapi"
                found.append(InterfaceDescriptor(
                    language=self.language,
                    file=file.relative_path,
                    interface_type="rest-api",
                    framework=framework,
                    name=func.name,
                    path=path,
                    method=None if verb in ("route", "api_route") else verb,
                ))
                break
        return found


class JavaScriptInterfaceDetector(InterfaceDetector):
    """Express-style ``app.get('/path', ...)`` registrations."""

    language = "javascript"

    def extract_interfaces(self, result: ParseResult, file: SourceFile) -> List[InterfaceDescriptor]:
        found = []
        for route in _summary_list(result, "routes"):
            method = route.get("method", "")
            if method not in HTTP_METHODS + ("all",):
                continue
            found.append(InterfaceDescriptor(
                language=file.language or self.language,
                file=file.relative_path,
                interface_type="rest-api",
                framework="express",
                name=f"{method.upper()} {route.get('path', '')}",
                path=route.get("path"),
                method=method,
            ))
        return found


class TypeScriptInterfaceDetector(JavaScriptInterfaceDetector):
    language = "typescript"

    def extract_interfaces(self, result: ParseResult, file: SourceFile) -> List[InterfaceDescriptor]:
        found = super().extract_interfaces(result, file)
        for iface in _summary_list(result, "interfaces"):
            found.append(InterfaceDescriptor(
                language=self.language,
                file=file.relative_path,
                interface_type="typescript-interface",
                name=iface.get("name"),
                properties=list(iface.get("properties", [])),
            ))
        return found


class GoInterfaceDetector(InterfaceDetector):
    """``net/http`` handlers, by signature and by ``HandleFunc`` registration."""

    language = "go"

    def extract_interfaces(self, result: ParseResult, file: SourceFile) -> List[InterfaceDescriptor]:
        found = []
        for func in result.functions:
            if any("http.ResponseWriter" in p or "*http.Request" in p for p in func.parameters):
                found.append(InterfaceDescriptor(
                    language=self.language,
                    file=file.relative_path,
                    interface_type="rest-api",
                    framework="standard-http",
                    name=func.name,
                ))
        for route in _summary_list(result, "routes"):
            method = route.get("method", "")
            found.append(InterfaceDescriptor(
                language=self.language,
                file=file.relative_path,
                interface_type="rest-api",
                framework="standard-http",
                name=route.get("path"),
                path=route.get("path"),
                method=method if method in HTTP_METHODS else None,
            ))
        return found


_DETECTORS: Dict[str, InterfaceDetector] = {
    d.language: d
    for d in (
        PythonInterfaceDetector(),
        JavaScriptInterfaceDetector(),
        TypeScriptInterfaceDetector(),
        GoInterfaceDetector(),
    )
}


def register_detector(detector: InterfaceDetector) -> None:
    _DETECTORS[detector.language] = detector


def get_detector(language: str) -> Optional[InterfaceDetector]:
    return _DETECTORS.get(language)


def extract_interfaces(result: ParseResult, file: SourceFile) -> List[InterfaceDescriptor]:
    """Run the detector for *file*'s language; failures yield no interfaces."""
    if not result.success:
        return []
    detector = get_detector(file.language)
    if detector is None:
        return []
    try:
        return detector.extract_interfaces(result, file)
    except Exception as exc:
        logger.warning("Interface extraction failed for %s: %s", file.relative_path, exc)
        return []
