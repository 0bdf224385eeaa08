"""Swagger 2.0 -> OpenAPI 3.0 structural upconversion.

Only the parts the canonical model reads are converted: servers,
schemas, parameters, request bodies, responses and security schemes.
"""

import copy
import logging

from api_spec_drift.errors import MalformedSpec

logger = logging.getLogger(__name__)

REF_REWRITES = (
    ("#/definitions/", "#/components/schemas/"),
    ("#/responses/", "#/components/responses/"),
    ("#/securityDefinitions/", "#/components/securitySchemes/"),
)

# Keys that live on a v2 non-body parameter but belong in its v3 schema
SCHEMA_KEYS = ("type", "format", "items", "enum", "default", "minimum", "maximum",
               "exclusiveMinimum", "exclusiveMaximum", "multipleOf", "minLength",
               "maxLength", "pattern", "minItems", "maxItems", "uniqueItems")

DEFAULT_MEDIA = "application/json"


def upconvert(doc: dict) -> dict:
    """Return a new OpenAPI 3.0 document equivalent to a Swagger 2.0 one."""
    src = copy.deepcopy(doc)
    shared_params = _mapping(src.get("parameters"), "'parameters'", "#/parameters")
    body_params = {
        name for name, p in shared_params.items()
        if isinstance(p, dict) and p.get("in") in ("body", "formData")
    }
    _rewrite_refs(src, body_params)

    consumes = _sequence(src.get("consumes"), "'consumes'", "#/consumes") or [DEFAULT_MEDIA]
    produces = _sequence(src.get("produces"), "'produces'", "#/produces") or [DEFAULT_MEDIA]

    components: dict = {
        "schemas": _mapping(src.get("definitions"), "'definitions'", "#/definitions"),
        "parameters": {},
        "requestBodies": {},
        "responses": {},
        "securitySchemes": {},
    }
    for name, param in shared_params.items():
        where = "#/parameters/" + _escape(name)
        if name in body_params:
            components["requestBodies"][name] = _body_from_params([param], consumes, where)
        else:
            components["parameters"][name] = _convert_param(param, where)
    for name, resp in _mapping(src.get("responses"), "'responses'", "#/responses").items():
        components["responses"][name] = _convert_response(resp, produces, "#/responses/" + _escape(name))
    for name, scheme in _mapping(src.get("securityDefinitions"), "'securityDefinitions'",
                                 "#/securityDefinitions").items():
        where = "#/securityDefinitions/" + _escape(name)
        components["securitySchemes"][name] = _convert_security(_mapping(scheme, "security definition", where))

    out = {
        "openapi": "3.0.3",
        "info": src.get("info") or {},
        "servers": _servers(src),
        "paths": {},
        "components": components,
    }
    if "security" in src:
        out["security"] = src["security"]
    if "tags" in src:
        out["tags"] = src["tags"]

    paths = src.get("paths") or {}
    if not isinstance(paths, dict):
        raise MalformedSpec("'paths' must be a mapping", "#/paths")
    for path, item in paths.items():
        where = "#/paths/" + _escape(str(path))
        item = _mapping(item, f"path item {path!r}", where)
        out["paths"][path] = _convert_path_item(item, consumes, produces, where)

    logger.info("Upconverted Swagger 2.0 document with %d paths", len(out["paths"]))
    return out


def _mapping(value, what: str, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedSpec(f"{what} must be a mapping, got {type(value).__name__}", where)
    return value


def _sequence(value, what: str, where: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedSpec(f"{what} must be a list, got {type(value).__name__}", where)
    return value


def _escape(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def _rewrite_refs(node, body_params: set[str]) -> None:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            node["$ref"] = _rewrite_ref(ref, body_params)
        for value in node.values():
            _rewrite_refs(value, body_params)
    elif isinstance(node, list):
        for value in node:
            _rewrite_refs(value, body_params)


def _rewrite_ref(ref: str, body_params: set[str]) -> str:
    for old, new in REF_REWRITES:
        if ref.startswith(old):
            return new + ref[len(old):]
    if ref.startswith("#/parameters/"):
        name = ref[len("#/parameters/"):]
        if name in body_params:
            return "#/components/requestBodies/" + name
        return "#/components/parameters/" + name
    return ref


def _servers(src: dict) -> list[dict]:
    host = src.get("host")
    base_path = src.get("basePath") or ""
    if base_path and not base_path.startswith("/"):
        base_path = "/" + base_path
    if not host:
        return [{"url": base_path or "/"}]
    schemes = src.get("schemes") or ["https"]
    return [{"url": f"{scheme}://{host}{base_path}"} for scheme in schemes]


def _convert_path_item(item: dict, consumes: list[str], produces: list[str], where: str) -> dict:
    out: dict = {}
    shared = _params(item.get("parameters"), f"{where}/parameters")
    shared_plain = [(w, p) for w, p in shared if not _is_body(p)]
    if shared_plain:
        out["parameters"] = [_convert_param(p, w) for w, p in shared_plain]
    shared_body = [(w, p) for w, p in shared if _is_body(p)]

    for method, op in item.items():
        if method == "parameters":
            continue
        if not isinstance(op, dict):
            out[method] = op  # left for the loader to reject
            continue
        out[method] = _convert_operation(op, shared_body, consumes, produces, f"{where}/{method}")
    return out


def _params(raw, where: str) -> list[tuple[str, dict]]:
    """Parameter objects paired with their pointers."""
    out = []
    for i, p in enumerate(_sequence(raw, "'parameters'", where)):
        out.append((f"{where}/{i}", _mapping(p, "parameter", f"{where}/{i}")))
    return out


def _convert_operation(op: dict, shared_body: list, consumes: list[str], produces: list[str],
                       where: str) -> dict:
    out = {k: v for k, v in op.items()
           if k not in ("parameters", "responses", "consumes", "produces", "schemes")}
    op_consumes = _sequence(op.get("consumes"), "'consumes'", f"{where}/consumes") or consumes
    op_produces = _sequence(op.get("produces"), "'produces'", f"{where}/produces") or produces

    params = _params(op.get("parameters"), f"{where}/parameters")
    plain = [_convert_param(p, w) for w, p in params if not _is_body(p)]
    body = shared_body + [(w, p) for w, p in params if _is_body(p)]
    if plain:
        out["parameters"] = plain
    if body:
        refs = [p for _, p in body if "$ref" in p]
        if refs and len(body) == 1:
            out["requestBody"] = {"$ref": refs[0]["$ref"]}
        else:
            inline = [p for _, p in body if "$ref" not in p]
            out["requestBody"] = _body_from_params(inline, op_consumes, body[0][0])

    responses = _mapping(op.get("responses"), "'responses'", f"{where}/responses")
    out["responses"] = {
        str(code): _convert_response(resp, op_produces, f"{where}/responses/{code}")
        for code, resp in responses.items()
    }
    return out


def _is_body(param: dict) -> bool:
    ref = param.get("$ref")
    return param.get("in") in ("body", "formData") or (
        isinstance(ref, str) and ref.startswith("#/components/requestBodies/")
    )


def _convert_param(param: dict, where: str) -> dict:
    param = _mapping(param, "parameter", where)
    if "$ref" in param:
        return {"$ref": param["$ref"]}
    out = {k: v for k, v in param.items() if k not in SCHEMA_KEYS and k != "collectionFormat"}
    schema = {k: param[k] for k in SCHEMA_KEYS if k in param}
    if param.get("type") == "file":
        schema = {"type": "string", "format": "binary"}
    out["schema"] = schema or {"type": "string"}
    return out


def _body_from_params(params: list[dict], consumes: list[str], where: str) -> dict:
    params = [_mapping(p, "parameter", where) for p in params]
    body_param = next((p for p in params if p.get("in") == "body"), None)
    if body_param is not None:
        media = [m for m in consumes if "form" not in m] or [DEFAULT_MEDIA]
        schema = body_param.get("schema") or {}
        return {
            "required": bool(body_param.get("required", False)),
            "description": body_param.get("description", ""),
            "content": {m: {"schema": schema} for m in media},
        }

    properties = {}
    required = []
    has_file = False
    for p in params:
        if not isinstance(p.get("name"), str):
            raise MalformedSpec("form parameter needs a 'name'", where)
        prop = {k: p[k] for k in SCHEMA_KEYS if k in p}
        if p.get("type") == "file":
            prop = {"type": "string", "format": "binary"}
            has_file = True
        if p.get("description"):
            prop["description"] = p["description"]
        properties[p["name"]] = prop
        if p.get("required"):
            required.append(p["name"])
    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required

    form_media = [m for m in consumes if "form" in m]
    if has_file or not form_media:
        form_media = ["multipart/form-data"] if has_file else form_media or ["application/x-www-form-urlencoded"]
    return {
        "required": bool(required),
        "content": {m: {"schema": schema} for m in form_media},
    }


def _convert_response(resp: dict, produces: list[str], where: str) -> dict:
    resp = _mapping(resp, "response", where)
    if "$ref" in resp:
        return {"$ref": resp["$ref"]}
    out = {"description": resp.get("description", "")}
    if "schema" in resp:
        out["content"] = {m: {"schema": resp["schema"]} for m in produces}
    if "headers" in resp:
        out["headers"] = resp["headers"]
    return out


def _convert_security(scheme: dict) -> dict:
    kind = scheme.get("type")
    if kind == "basic":
        return {"type": "http", "scheme": "basic", "description": scheme.get("description", "")}
    if kind == "apiKey":
        return {"type": "apiKey", "name": scheme.get("name"), "in": scheme.get("in")}
    if kind == "oauth2":
        flow = scheme.get("flow", "implicit")
        v3_flow = {"accessCode": "authorizationCode", "application": "clientCredentials"}.get(flow, flow)
        flow_body = {"scopes": scheme.get("scopes") or {}}
        if "authorizationUrl" in scheme:
            flow_body["authorizationUrl"] = scheme["authorizationUrl"]
        if "tokenUrl" in scheme:
            flow_body["tokenUrl"] = scheme["tokenUrl"]
        return {"type": "oauth2", "flows": {v3_flow: flow_body}}
    return dict(scheme)
