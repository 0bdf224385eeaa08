import json
from pathlib import Path

import pytest

from api_spec_drift.errors import MalformedSpec, SpecError, UnresolvableReference, UnsupportedVersion
from api_spec_drift.parser.base import ArraySchema, ObjectSchema, PrimitiveSchema
from api_spec_drift.parser.detect import detect_version, parse_document, sniff_format
from api_spec_drift.parser.openapi import dump_document, load, load_file, media_rank, normalize_media

FIXTURES = Path(__file__).parent / "fixtures"


def _doc(paths: dict, **extra) -> str:
    return json.dumps({"openapi": "3.0.3", "info": {"title": "t", "version": "1"}, "paths": paths, **extra})


class TestDetect:
    def test_sniff_json(self):
        assert sniff_format('  {"openapi": "3.0.0"}') == "json"

    def test_sniff_yaml(self):
        assert sniff_format("openapi: 3.0.0\n") == "yaml"

    def test_bom_is_stripped(self):
        doc = parse_document(b"\xef\xbb\xbfopenapi: 3.0.0\n")
        assert doc == {"openapi": "3.0.0"}

    def test_version_markers(self):
        assert detect_version({"openapi": "3.1.0"}) == "3.1.0"
        assert detect_version({"swagger": "2.0"}) == "2.0"

    def test_unknown_version(self):
        with pytest.raises(UnsupportedVersion):
            detect_version({"openapi": "4.0.0"})
        with pytest.raises(UnsupportedVersion):
            detect_version({"info": {}})


class TestLoadPetstore:
    def test_metadata(self):
        spec = load_file(FIXTURES / "petstore.yaml")
        assert spec.title == "Petstore"
        assert spec.version == "1.0.0"
        assert spec.source_version == "3.0.3"

    def test_server_variables_substituted(self):
        spec = load_file(FIXTURES / "petstore.yaml")
        assert spec.servers[0].resolved_url == "https://api.example.com/v1"
        assert spec.base_paths == ["/v1"]

    def test_operations_in_declaration_order(self):
        spec = load_file(FIXTURES / "petstore.yaml")
        assert [op.key for op in spec.operations] == [
            "GET /pets",
            "POST /pets",
            "GET /pets/{petId}",
            "DELETE /pets/{petId}",
            "GET /pets/mine",
        ]

    def test_lookup_by_operation_id(self):
        spec = load_file(FIXTURES / "petstore.yaml")
        assert spec.operation("showPetById").key == "GET /pets/{petId}"
        assert spec.operation("GET /pets").operation_id == "listPets"
        assert spec.operation("nope") is None

    def test_query_parameter_constraints_kept(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("listPets")
        limit = op.params_in("query")[0]
        assert limit.name == "limit"
        assert limit.required is False
        assert limit.schema_.minimum == 1
        assert limit.schema_.maximum == 100

    def test_path_level_params_merged_and_overridden(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("showPetById")
        names = [(p.location, p.name, p.required) for p in op.parameters]
        assert names == [("path", "petId", True), ("header", "X-Trace", True)]

    def test_path_level_params_inherited(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("deletePet")
        trace = [p for p in op.parameters if p.name == "X-Trace"][0]
        assert trace.required is False

    def test_json_media_ranked_first(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("createPet")
        assert list(op.request_body.content) == ["application/json", "application/xml"]
        assert op.request_body.required is True
        assert isinstance(op.request_body.schema_, ObjectSchema)
        assert "name" in op.request_body.schema_.properties

    def test_api_key_security_becomes_header_param(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("createPet")
        security = [p for p in op.parameters if p.security]
        assert [(p.location, p.name) for p in security] == [("header", "X-API-Key")]
        assert op.security == ["api_key"]

    def test_bearer_security_becomes_authorization(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("deletePet")
        assert any(p.security and p.name == "Authorization" for p in op.parameters)

    def test_response_schema(self):
        op = load_file(FIXTURES / "petstore.yaml").operation("listPets")
        ok = op.responses["200"]
        assert ok.media_type == "application/json"
        assert isinstance(ok.schema_, ArraySchema)

    def test_named_schemas_registered(self):
        spec = load_file(FIXTURES / "petstore.yaml")
        pet = spec.schemas["#/components/schemas/Pet"]
        assert pet.required == ("name",)
        assert pet.properties["id"].read_only is True


class TestRoundTrip:
    @pytest.mark.parametrize("fixture", ["petstore.yaml", "orders.yaml", "cyclic.yaml", "composition.yaml"])
    def test_dump_preserves_operations(self, fixture):
        spec = load_file(FIXTURES / fixture)
        again = load(json.dumps(dump_document(spec)), "json")
        assert [op.key for op in again.operations] == [op.key for op in spec.operations]

    def test_dump_keeps_constraints(self):
        spec = load_file(FIXTURES / "orders.yaml")
        doc = dump_document(spec)
        schema = doc["paths"]["/orders"]["post"]["requestBody"]["content"]["application/json"]["schema"]
        assert schema["properties"]["quantity"] == {"type": "integer", "minimum": 1, "maximum": 100}


class TestLoadErrors:
    def test_empty_document(self):
        with pytest.raises(MalformedSpec):
            load(b"")

    def test_unparseable_yaml(self):
        with pytest.raises(MalformedSpec):
            load("openapi: 3.0.0\npaths: [unclosed\n")

    def test_root_must_be_mapping(self):
        with pytest.raises(MalformedSpec):
            load("- a\n- b\n")

    def test_bad_json_with_hint(self):
        with pytest.raises(MalformedSpec):
            load("{not json", "json")

    def test_unsupported_version(self):
        with pytest.raises(UnsupportedVersion):
            load('{"openapi": "4.0.0", "paths": {}}')

    def test_dangling_schema_reference(self):
        doc = _doc({}, components={"schemas": {"A": {"$ref": "#/components/schemas/Missing"}}})
        with pytest.raises(UnresolvableReference):
            load(doc)

    def test_dangling_parameter_reference(self):
        doc = _doc({"/a": {"get": {"parameters": [{"$ref": "#/components/parameters/nope"}], "responses": {}}}})
        with pytest.raises(UnresolvableReference):
            load(doc)

    def test_external_reference_rejected(self):
        doc = _doc({}, components={"schemas": {"A": {"$ref": "other.yaml#/B"}}})
        with pytest.raises(UnresolvableReference):
            load(doc)

    def test_duplicate_placeholders(self):
        with pytest.raises(MalformedSpec):
            load(_doc({"/a/{id}/b/{id}": {"get": {"responses": {}}}}))

    def test_summary_null_reads_as_empty(self):
        spec = load(_doc({"/a": {"get": {"summary": None, "description": None, "responses": {}}}}))
        assert spec.operations[0].summary == ""

    @pytest.mark.parametrize("paths, extra, pointer", [
        ({"/a": {"get": {"responses": {"200": "OK"}}}}, {}, "#/paths/~1a/get/responses/200"),
        ({"/a": {"get": {"responses": "OK"}}}, {}, "#/paths/~1a/get/responses"),
        ({"/a": {"get": {"tags": "x", "responses": {}}}}, {}, "#/paths/~1a/get/tags"),
        ({"/a": {"get": {"tags": [{"n": 1}], "responses": {}}}}, {}, "#/paths/~1a/get/tags/0"),
        ({"/a": {"get": {"summary": ["s"], "responses": {}}}}, {}, "#/paths/~1a/get/summary"),
        ({"/a": {"post": {"requestBody": "x", "responses": {}}}}, {}, "#/paths/~1a/post/requestBody"),
        ({"/a": {"post": {"requestBody": {"content": {"application/json": "x"}}, "responses": {}}}}, {},
         "#/paths/~1a/post/requestBody/content/application~1json"),
        ({"/a": {"get": {"parameters": {"name": "q"}, "responses": {}}}}, {}, "#/paths/~1a/get/parameters"),
        ({"/a": {"get": {"parameters": [{"name": 3, "in": "query"}], "responses": {}}}}, {},
         "#/paths/~1a/get/parameters/0/name"),
        ({"/a": {"get": {"security": "open", "responses": {}}}}, {}, "#/paths/~1a/get/security"),
        ({"/a": "x"}, {}, "#/paths/~1a"),
        ({}, {"info": "x"}, "#/info"),
        ({}, {"info": {"title": {"t": 1}}}, "#/info/title"),
        ({}, {"servers": "https://h"}, "#/servers"),
        ({}, {"components": "x"}, "#/components"),
        ({}, {"components": {"securitySchemes": {"k": "x"}}}, "#/components/securitySchemes/k"),
    ])
    def test_wrongly_typed_structure(self, paths, extra, pointer):
        with pytest.raises(MalformedSpec) as exc:
            load(_doc(paths, **extra))
        assert exc.value.pointer == pointer

    def test_errors_share_base(self):
        with pytest.raises(SpecError):
            load("info: {}\n")


class TestSchemaNormalization:
    def _body_schema(self, schema: dict):
        doc = _doc({"/x": {"post": {
            "requestBody": {"content": {"application/json": {"schema": schema}}},
            "responses": {},
        }}})
        return load(doc).operations[0].request_body.schema_

    def test_nullable_type_list(self):
        node = self._body_schema({"type": ["string", "null"], "maxLength": 3})
        assert isinstance(node, PrimitiveSchema)
        assert node.nullable is True
        assert node.max_length == 3

    def test_multi_type_list_becomes_any_of(self):
        node = self._body_schema({"type": ["string", "integer"]})
        assert node.kind == "union"
        assert node.mode == "anyOf"
        assert [b.type for b in node.branches] == ["string", "integer"]

    def test_boolean_exclusive_bounds_become_numeric(self):
        node = self._body_schema({"type": "number", "minimum": 0, "exclusiveMinimum": True, "maximum": 9})
        assert node.exclusive_minimum == 0
        assert node.minimum is None
        assert node.maximum == 9

    def test_const_becomes_enum(self):
        node = self._body_schema({"const": "fixed"})
        assert node.enum == ("fixed",)

    def test_siblings_of_composition_join_all_of(self):
        node = self._body_schema({
            "type": "object",
            "properties": {"a": {"type": "string"}},
            "oneOf": [{"required": ["a"]}, {"properties": {"b": {"type": "integer"}}}],
        })
        assert node.mode == "allOf"
        assert isinstance(node.branches[0], ObjectSchema)
        assert node.branches[1].mode == "oneOf"

    def test_media_helpers(self):
        assert normalize_media("Application/JSON; charset=utf-8") == "application/json"
        assert media_rank("application/vnd.api+json") < media_rank("application/x-www-form-urlencoded")
        assert media_rank("multipart/form-data") < media_rank("text/plain") < media_rank("application/xml")
