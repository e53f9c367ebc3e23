"""Tests for interface detection."""

from polyglot_analyzer.interfaces import (
    InterfaceDetector,
    extract_interfaces,
    get_detector,
    register_detector,
)
from polyglot_analyzer.models import FunctionInfo, ParseResult, SourceFile


def _file(relative, language):
    return SourceFile(path=relative, relative_path=relative, language=language, extension="")


def test_flask_and_fastapi_routes():
    result = ParseResult(success=True, functions=[
        FunctionInfo(name="list_users", line_start=1, decorators=['@app.route("/users")']),
        FunctionInfo(name="create", line_start=5, decorators=["@router.post(path='/items')"]),
        FunctionInfo(name="plain", line_start=9, decorators=["@budget(3)"]),
    ])
    found = extract_interfaces(result, _file("app.py", "python"))

    assert [(i.name, i.framework, i.path, i.method) for i in found] == [
        ("list_users", "flask", "/users", None),
        ("create", "fastapi", "/items", "post"),
    ]
    assert all(i.interface_type == "rest-api" for i in found)


def test_express_routes():
    result = ParseResult(success=True, ast={"routes": [
        {"object": "app", "method": "get", "path": "/users"},
        {"object": "cache", "method": "set", "path": "key"},
    ]})
    found = extract_interfaces(result, _file("server.js", "javascript"))

    assert len(found) == 1
    assert found[0].name == "GET /users"
    assert found[0].framework == "express"
    assert found[0].path == "/users"


def test_typescript_interfaces():
    result = ParseResult(success=True, ast={
        "routes": [],
        "interfaces": [{"name": "User", "properties": ["id", "name"], "exported": True}],
    })
    found = extract_interfaces(result, _file("client.ts", "typescript"))

    assert len(found) == 1
    assert found[0].interface_type == "typescript-interface"
    assert found[0].name == "User"
    assert found[0].properties == ["id", "name"]


def test_go_handlers_and_registrations():
    result = ParseResult(
        success=True,
        ast={"routes": [{"object": "http", "method": "handlefunc", "path": "/users"}]},
        functions=[
            FunctionInfo(name="handleUsers", line_start=3,
                         parameters=["w http.ResponseWriter", "r *http.Request"]),
            FunctionInfo(name="helper", line_start=9, parameters=["n int"]),
        ],
    )
    found = extract_interfaces(result, _file("gateway.go", "go"))

    assert [(i.name, i.path, i.method) for i in found] == [
        ("handleUsers", None, None),
        ("/users", "/users", None),
    ]
    assert {i.framework for i in found} == {"standard-http"}


def test_unsuccessful_result_has_no_interfaces():
    result = ParseResult(success=False, ast={"routes": [{"method": "get", "path": "/x"}]})
    assert extract_interfaces(result, _file("a.js", "javascript")) == []


def test_unknown_language_has_no_interfaces():
    assert get_detector("cobol") is None
    assert extract_interfaces(ParseResult(success=True), _file("a.cbl", "cobol")) == []


def test_non_dict_ast_is_tolerated():
    result = ParseResult(success=True, ast="not a summary")
    assert extract_interfaces(result, _file("a.js", "javascript")) == []


def test_detector_failure_yields_no_interfaces():
    class Broken(InterfaceDetector):
        language = "brokenlang"

        def extract_interfaces(self, result, file):
            raise RuntimeError("detector bug")

    register_detector(Broken())
    assert extract_interfaces(ParseResult(success=True), _file("a.x", "brokenlang")) == []
