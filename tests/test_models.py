import pytest
from pydantic import TypeAdapter, ValidationError

from api_spec_drift.coverage.base import CoverageState, DriftReport, OperationRef, ShadowEndpoint
from api_spec_drift.generator.base import Strategy, SynthesizedRequest
from api_spec_drift.matcher.base import MatchResult, ObservedRequest, ObservedResponse
from api_spec_drift.parser.base import (
    ArraySchema,
    ObjectSchema,
    OperationEntry,
    Param,
    PathTemplate,
    PrimitiveSchema,
    RefSchema,
    RequestBody,
    SchemaNode,
    Server,
    placeholder_names,
)


class TestSchemaNode:
    def test_discriminated_on_kind(self):
        node = TypeAdapter(SchemaNode).validate_python(
            {"kind": "object", "properties": {"n": {"kind": "primitive", "type": "integer", "minimum": 1}}}
        )
        assert isinstance(node, ObjectSchema)
        assert isinstance(node.properties["n"], PrimitiveSchema)
        assert node.properties["n"].minimum == 1

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(SchemaNode).validate_python({"kind": "tuple"})

    def test_nodes_are_frozen(self):
        node = PrimitiveSchema(type="string")
        with pytest.raises(ValidationError):
            node.type = "integer"

    def test_integer_bounds_stay_integers(self):
        node = PrimitiveSchema(type="integer", minimum=1, maximum=100)
        assert node.minimum == 1 and isinstance(node.minimum, int)

    def test_has_constraints(self):
        assert PrimitiveSchema().has_constraints() is False
        assert PrimitiveSchema(pattern="^a$").has_constraints() is True

    def test_ref_name(self):
        assert RefSchema(pointer="#/components/schemas/Node").name == "Node"

    def test_array_items_optional(self):
        assert ArraySchema().items is None


class TestParam:
    def test_schema_alias(self):
        p = Param(name="limit", location="query", required=False, schema=PrimitiveSchema(type="integer"))
        assert p.schema_.type == "integer"
        assert p.param_type == "integer"

    def test_header_key_is_case_insensitive(self):
        p = Param(name="X-Trace", location="header", required=False)
        assert p.key == ("header", "x-trace")

    def test_query_key_keeps_case(self):
        p = Param(name="pageSize", location="query", required=False)
        assert p.key == ("query", "pageSize")

    def test_untyped_param_reads_as_string(self):
        assert Param(name="q", location="query", required=False).param_type == "string"


class TestOperationModels:
    def test_operation_key(self):
        op = OperationEntry(method="GET", path="/pets/{petId}")
        assert op.key == "GET /pets/{petId}"

    def test_template_operation_lookup_ignores_case(self):
        op = OperationEntry(method="GET", path="/pets")
        template = PathTemplate(path="/pets", operations=[op])
        assert template.operation("get") is op
        assert template.operation("POST") is None

    def test_request_body_prefers_first_media(self):
        body = RequestBody(content={"application/json": ObjectSchema(), "application/xml": None})
        assert body.media_type == "application/json"
        assert isinstance(body.schema_, ObjectSchema)

    def test_placeholder_names(self):
        assert placeholder_names("/users/{id}/orders/{orderId}") == ["id", "orderId"]
        assert placeholder_names("/files/{name}.{ext}") == ["name", "ext"]

    @pytest.mark.parametrize("url,base", [
        ("https://api.example.com/v1/", "/v1"),
        ("https://api.example.com", ""),
        ("/api", "/api"),
        ("/", ""),
    ])
    def test_server_base_path(self, url, base):
        assert Server(url=url, resolved_url=url).base_path == base


class TestObservedRequest:
    def test_method_uppercased(self):
        assert ObservedRequest(method="get", path="/pets").method == "GET"

    def test_full_url_split(self):
        r = ObservedRequest(method="GET", path="https://api.example.com/v1/pets?limit=5&tag=a&tag=b")
        assert r.path == "/v1/pets"
        assert r.host == "api.example.com"
        assert r.query == {"limit": ["5"], "tag": ["a", "b"]}

    def test_scalar_query_listified(self):
        assert ObservedRequest(method="GET", path="/p", query={"a": "1"}).query == {"a": ["1"]}

    def test_header_lookup_case_insensitive(self):
        r = ObservedRequest(method="GET", path="/", headers={"X-Token": "t"})
        assert r.header("x-token") == "t"
        assert r.header("missing") is None

    def test_cookies_parsed(self):
        r = ObservedRequest(method="GET", path="/", headers={"Cookie": "Session=abc; theme=dark"})
        assert r.cookies == {"session": "abc", "theme": "dark"}

    def test_is_synthesized(self):
        assert ObservedRequest(method="GET", path="/").is_synthesized is False
        assert ObservedRequest(method="GET", path="/", strategy="valid").is_synthesized is True


class TestMatchResult:
    def test_shadow(self):
        result = MatchResult(method="GET", concrete_path="/nowhere")
        assert result.is_shadow is True
        assert result.matched is False
        assert result.is_undocumented_method is False

    def test_undocumented_method(self):
        result = MatchResult(method="PATCH", concrete_path="/pets/1", template="/pets/{petId}")
        assert result.is_undocumented_method is True
        assert result.is_shadow is False


class TestCoverageModels:
    def test_advance_never_regresses(self):
        assert CoverageState.TESTED.advance(CoverageState.OBSERVED) is CoverageState.TESTED
        assert CoverageState.UNDISCOVERED.advance(CoverageState.TESTED) is CoverageState.TESTED
        assert CoverageState.OBSERVED.advance(CoverageState.OBSERVED) is CoverageState.OBSERVED

    def test_report_summary(self):
        report = DriftReport(
            shadow_endpoints=[ShadowEndpoint(method="GET", path="/x")],
            uncovered_operations=[OperationRef(key="GET /a", method="GET", path="/a")],
            coverage={"GET /a": CoverageState.UNDISCOVERED, "GET /b": CoverageState.TESTED},
        )
        summary = report.summary()
        assert summary["undiscovered"] == 1
        assert summary["tested"] == 1
        assert summary["shadow_endpoints"] == 1
        assert report.has_drift is True


class TestSynthesizedRequest:
    def test_to_observed_carries_strategy_and_cookies(self):
        req = SynthesizedRequest(
            operation_key="POST /orders",
            strategy=Strategy.BOUNDARY,
            method="POST",
            path="/orders",
            url="https://api.example.com/orders",
            query={"dry": "true", "tag": ["a", "b"]},
            cookies={"session": "abc"},
            body={"quantity": 1},
            content_type="application/json",
        )
        observed = req.to_observed(ObservedResponse(status=201))
        assert observed.strategy == "boundary"
        assert observed.query == {"dry": ["true"], "tag": ["a", "b"]}
        assert observed.cookies == {"session": "abc"}
        assert observed.header("content-type") == "application/json"
        assert observed.response.status == 201

    def test_query_string(self):
        req = SynthesizedRequest(operation_key="GET /p", strategy="valid", method="GET", path="/p", url="/p",
                                 query={"a": "1", "b": ["x", "y"]})
        assert req.query_string() == "a=1&b=x&b=y"
