import json
from pathlib import Path

import pytest

from api_spec_drift.errors import MalformedSpec
from api_spec_drift.parser.base import ArraySchema, ObjectSchema
from api_spec_drift.parser.openapi import load, load_file
from api_spec_drift.parser.swagger import upconvert

FIXTURES = Path(__file__).parent / "fixtures"


class TestUpconvert:
    def test_servers_from_host_and_base_path(self):
        doc = upconvert({"swagger": "2.0", "host": "h.example.com", "basePath": "api", "schemes": ["http", "https"]})
        assert doc["servers"] == [{"url": "http://h.example.com/api"}, {"url": "https://h.example.com/api"}]

    def test_server_without_host(self):
        doc = upconvert({"swagger": "2.0", "basePath": "/v2"})
        assert doc["servers"] == [{"url": "/v2"}]

    def test_definition_refs_rewritten(self):
        doc = upconvert({
            "swagger": "2.0",
            "paths": {"/a": {"get": {"responses": {"200": {"description": "", "schema": {"$ref": "#/definitions/A"}}}}}},
            "definitions": {"A": {"type": "string"}},
        })
        content = doc["paths"]["/a"]["get"]["responses"]["200"]["content"]
        assert content["application/json"]["schema"] == {"$ref": "#/components/schemas/A"}
        assert doc["components"]["schemas"] == {"A": {"type": "string"}}

    def test_shared_body_parameter_becomes_request_body(self):
        doc = upconvert({
            "swagger": "2.0",
            "parameters": {"Payload": {"name": "p", "in": "body", "schema": {"type": "object"}}},
            "paths": {"/a": {"post": {"parameters": [{"$ref": "#/parameters/Payload"}], "responses": {}}}},
        })
        assert doc["paths"]["/a"]["post"]["requestBody"] == {"$ref": "#/components/requestBodies/Payload"}
        assert "Payload" in doc["components"]["requestBodies"]

    def test_original_document_untouched(self):
        src = {"swagger": "2.0", "paths": {"/a": {"get": {"parameters": [
            {"name": "q", "in": "query", "type": "string"}], "responses": {}}}}}
        upconvert(src)
        assert src["paths"]["/a"]["get"]["parameters"][0] == {"name": "q", "in": "query", "type": "string"}

    def test_oauth2_flow_renamed(self):
        doc = upconvert({"swagger": "2.0", "securityDefinitions": {
            "o": {"type": "oauth2", "flow": "accessCode", "authorizationUrl": "https://a", "tokenUrl": "https://t"}}})
        flows = doc["components"]["securitySchemes"]["o"]["flows"]
        assert set(flows) == {"authorizationCode"}


class TestLoadSwagger2:
    def test_source_version_and_servers(self):
        spec = load_file(FIXTURES / "swagger2.json")
        assert spec.source_version == "2.0"
        assert spec.title == "Legacy Store"
        assert spec.servers[0].resolved_url == "https://legacy.example.com/api"
        assert spec.base_paths == ["/api"]

    def test_operations(self):
        spec = load_file(FIXTURES / "swagger2.json")
        assert [op.key for op in spec.operations] == [
            "GET /items",
            "POST /items",
            "GET /items/{itemId}",
            "POST /items/{itemId}/image",
        ]

    def test_query_params_get_schemas(self):
        op = load_file(FIXTURES / "swagger2.json").operation("listItems")
        page, tags = op.params_in("query")
        assert page.schema_.type == "integer"
        assert page.schema_.minimum == 1
        assert isinstance(tags.schema_, ArraySchema)
        assert tags.schema_.items.type == "string"

    def test_document_security_applies_basic_auth(self):
        spec = load_file(FIXTURES / "swagger2.json")
        op = spec.operation("listItems")
        assert op.security == ["basicAuth"]
        assert spec.security_schemes["basicAuth"].type == "http"
        assert spec.security_schemes["basicAuth"].scheme == "basic"
        assert [p.name for p in op.parameters if p.security] == ["Authorization"]

    def test_operation_security_overrides_document(self):
        op = load_file(FIXTURES / "swagger2.json").operation("createItem")
        assert [(p.location, p.name) for p in op.parameters if p.security] == [("query", "token")]

    def test_body_parameter_becomes_request_body(self):
        spec = load_file(FIXTURES / "swagger2.json")
        op = spec.operation("createItem")
        assert op.request_body.required is True
        assert op.request_body.media_type == "application/json"
        assert op.request_body.schema_ == spec.schemas["#/components/schemas/Item"]

    def test_form_data_with_file_becomes_multipart(self):
        op = load_file(FIXTURES / "swagger2.json").operation("uploadImage")
        assert op.request_body.media_type == "multipart/form-data"
        schema = op.request_body.schema_
        assert isinstance(schema, ObjectSchema)
        assert schema.required == ("file",)
        assert schema.properties["file"].format == "binary"
        assert [p.name for p in op.params_in("path")] == ["itemId"]

    def test_path_item_parameters_inherited(self):
        op = load_file(FIXTURES / "swagger2.json").operation("getItem")
        assert [p.name for p in op.params_in("path")] == ["itemId"]

    def test_exclusive_minimum_normalized(self):
        spec = load_file(FIXTURES / "swagger2.json")
        price = spec.schemas["#/components/schemas/Item"].properties["price"]
        assert price.exclusive_minimum == 0
        assert price.minimum is None

    def test_response_content_from_produces(self):
        op = load_file(FIXTURES / "swagger2.json").operation("getItem")
        assert op.responses["200"].media_type == "application/json"


class TestMalformedSwagger2:
    @pytest.mark.parametrize("doc, pointer", [
        ({"paths": {"/a": {"get": {"responses": {"200": "OK"}}}}}, "#/paths/~1a/get/responses/200"),
        ({"paths": {"/a": {"get": {"parameters": ["q"], "responses": {}}}}}, "#/paths/~1a/get/parameters/0"),
        ({"paths": {"/a": {"get": {"parameters": "q", "responses": {}}}}}, "#/paths/~1a/get/parameters"),
        ({"paths": {"/a": {"parameters": [7], "get": {"responses": {}}}}}, "#/paths/~1a/parameters/0"),
        ({"paths": {"/a": {"post": {"parameters": [{"in": "formData", "type": "string"}], "responses": {}}}}},
         "#/paths/~1a/post/parameters/0"),
        ({"paths": {"/a": "x"}}, "#/paths/~1a"),
        ({"paths": {"/a": {"get": "x"}}}, "#/paths/~1a/get"),
        ({"responses": {"NotFound": "gone"}}, "#/responses/NotFound"),
        ({"securityDefinitions": {"k": "x"}}, "#/securityDefinitions/k"),
        ({"info": "x"}, "#/info"),
    ])
    def test_wrongly_typed_structure(self, doc, pointer):
        with pytest.raises(MalformedSpec) as exc:
            load(json.dumps({"swagger": "2.0", **doc}))
        assert exc.value.pointer == pointer
