"""OpenAPI / Swagger document loader.

Parses OpenAPI 3.x and Swagger 2.0 documents into one canonical
Specification. Loading is all-or-nothing: any defect raises a SpecError
before a Specification is returned.
"""

import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from api_spec_drift.errors import MalformedSpec
from api_spec_drift.parser.base import (
    HTTP_METHODS,
    ArraySchema,
    ObjectSchema,
    OperationEntry,
    Param,
    PathTemplate,
    PrimitiveSchema,
    RefSchema,
    RequestBody,
    ResponseSpec,
    SchemaNode,
    SecurityScheme,
    Server,
    Specification,
    UnionSchema,
    placeholder_names,
)
from api_spec_drift.parser.detect import detect_version, parse_document
from api_spec_drift.parser.refs import RefRegistry
from api_spec_drift.parser.swagger import upconvert

logger = logging.getLogger(__name__)

PARAM_LOCATIONS = ("path", "query", "header", "cookie")
_SERVER_VAR = re.compile(r"\{([^}]+)\}")


def load(data: bytes | str, format_hint: str | None = None, cycle_depth: int = 1) -> Specification:
    """Parse a specification document into a Specification."""
    doc = parse_document(data, format_hint)
    source_version = detect_version(doc)
    if source_version == "2.0":
        doc = upconvert(doc)

    spec = _normalize(doc, source_version, cycle_depth)
    logger.info(
        "Loaded %s spec %r: %d paths, %d operations, %d schemas",
        source_version, spec.title, len(spec.templates), len(spec.operations), len(spec.schemas),
    )
    return spec


def load_file(file_path: Path, cycle_depth: int = 1) -> Specification:
    """Load a specification from disk, using the extension as format hint."""
    suffix = file_path.suffix.lower()
    hint = {".json": "json", ".yaml": "yaml", ".yml": "yaml"}.get(suffix)
    return load(file_path.read_bytes(), hint, cycle_depth=cycle_depth)


def _normalize(doc: dict, source_version: str, cycle_depth: int) -> Specification:
    registry = RefRegistry(doc, cycle_depth=cycle_depth)
    components = _mapping(doc.get("components"), "'components'", "#/components")

    # Build every named schema up front so dangling refs fail the load
    for name in _mapping(components.get("schemas"), "'schemas'", "#/components/schemas"):
        registry.resolve("#/components/schemas/" + _escape(name))

    raw_schemes = _mapping(components.get("securitySchemes"), "'securitySchemes'", "#/components/securitySchemes")
    schemes = {}
    for name, raw in raw_schemes.items():
        where = "#/components/securitySchemes/" + _escape(name)
        schemes[name] = _security_scheme(name, _mapping(registry.deref(raw), "security scheme", where), where)

    paths = doc.get("paths")
    if paths is None:
        paths = {}
    if not isinstance(paths, dict):
        raise MalformedSpec("'paths' must be a mapping", "#/paths")

    templates = []
    for path, item in paths.items():
        if not isinstance(path, str) or not path.startswith("/"):
            raise MalformedSpec(f"path {path!r} must start with '/'", "#/paths")
        where = "#/paths/" + _escape(path)
        item = _mapping(registry.deref(item), f"path item {path!r}", where)
        templates.append(_template(path, item, doc, registry, schemes, where))

    info = _mapping(doc.get("info"), "'info'", "#/info")
    return _build(
        Specification, "#",
        title=_text(info.get("title"), "#/info/title"),
        version=_text(info.get("version"), "#/info/version"),
        source_version=source_version,
        servers=_servers(doc.get("servers")),
        templates=templates,
        schemas=registry.schemas,
        security_schemes=schemes,
    )


def _mapping(value: Any, what: str, where: str) -> dict:
    """``value`` as a dict; None counts as empty, anything else is malformed."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedSpec(f"{what} must be a mapping, got {type(value).__name__}", where)
    return value


def _sequence(value: Any, what: str, where: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedSpec(f"{what} must be a list, got {type(value).__name__}", where)
    return value


def _text(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise MalformedSpec(f"expected a string, got {type(value).__name__}", where)
    return str(value)


def _build(model: type, where: str, **fields):
    """Construct a model, reporting field validation failures as MalformedSpec."""
    try:
        return model(**fields)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise MalformedSpec(f"invalid {model.__name__}: {problems}", where) from e


def _template(path: str, item: dict, doc: dict, registry: RefRegistry,
              schemes: dict[str, SecurityScheme], where: str) -> PathTemplate:
    names = placeholder_names(path)
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise MalformedSpec(f"duplicate placeholders {sorted(duplicates)} in {path}", where)
    if any(not n for n in names):
        raise MalformedSpec(f"empty placeholder in {path}", where)

    shared = _parameters(item.get("parameters"), registry, f"{where}/parameters")
    operations = []
    for method, raw_op in item.items():
        if not isinstance(method, str) or method.upper() not in HTTP_METHODS:
            continue
        op_where = f"{where}/{method}"
        if not isinstance(raw_op, dict):
            raise MalformedSpec(f"operation {method} must be a mapping", op_where)
        own = _parameters(raw_op.get("parameters"), registry, f"{op_where}/parameters")

        # operation-level parameters override path-level ones on (in, name)
        merged: dict[tuple[str, str], Param] = {p.key: p for p in shared}
        for p in own:
            merged[p.key] = p
        for name in names:
            if ("path", name) not in merged:
                merged[("path", name)] = Param(
                    name=name, location="path", required=True, schema=PrimitiveSchema(type="string"),
                )

        security = _effective_security(raw_op, doc, schemes, op_where)
        params = list(merged.values()) + _security_params(security, schemes, merged)

        tags = _sequence(raw_op.get("tags"), "'tags'", f"{op_where}/tags")
        operation_id = raw_op.get("operationId")
        operations.append(
            _build(
                OperationEntry, op_where,
                method=method.upper(),
                path=path,
                operation_id=None if operation_id is None else _text(operation_id, f"{op_where}/operationId"),
                summary=_text(raw_op.get("summary"), f"{op_where}/summary"),
                tags=[_text(t, f"{op_where}/tags/{i}") for i, t in enumerate(tags)],
                parameters=params,
                request_body=_request_body(raw_op.get("requestBody"), registry, f"{op_where}/requestBody"),
                responses=_responses(raw_op.get("responses"), registry, f"{op_where}/responses"),
                security=security,
                deprecated=bool(raw_op.get("deprecated", False)),
            )
        )
    return PathTemplate(path=path, operations=operations)


def _parameters(raw_params: Any, registry: RefRegistry, where: str) -> list[Param]:
    result = []
    for i, raw in enumerate(_sequence(raw_params, "'parameters'", where)):
        p = registry.deref(raw)
        if not isinstance(p, dict) or "name" not in p or "in" not in p:
            raise MalformedSpec("parameter needs 'name' and 'in'", f"{where}/{i}")
        location = p["in"]
        if location not in PARAM_LOCATIONS:
            raise MalformedSpec(f"unknown parameter location {location!r}", f"{where}/{i}")
        if not isinstance(p["name"], str) or not p["name"]:
            raise MalformedSpec("parameter name must be a non-empty string", f"{where}/{i}/name")

        raw_schema = p.get("schema")
        content = _mapping(p.get("content"), "'content'", f"{where}/{i}/content")
        if raw_schema is None and content:
            media, media_obj = next(iter(content.items()))
            media_obj = _mapping(media_obj, f"media type {media!r}", f"{where}/{i}/content/{_escape(media)}")
            raw_schema = media_obj.get("schema")
        schema = registry.schema(raw_schema, f"{where}/{i}/schema")
        result.append(
            _build(
                Param, f"{where}/{i}",
                name=p["name"],
                location=location,
                required=bool(p.get("required", False)) or location == "path",
                schema=schema,
                description=_text(p.get("description"), f"{where}/{i}/description"),
                example=p.get("example"),
            )
        )
    return result


def _request_body(raw: Any, registry: RefRegistry, where: str) -> RequestBody | None:
    body = _mapping(registry.deref(raw), "'requestBody'", where)
    if not body:
        return None
    content = _mapping(body.get("content"), "'content'", f"{where}/content")
    ordered = sorted(content.items(), key=lambda kv: media_rank(kv[0]))
    schemas: dict[str, SchemaNode | None] = {}
    for media, media_obj in ordered:
        media_where = f"{where}/content/{_escape(media)}"
        raw_schema = _mapping(media_obj, f"media type {media!r}", media_where).get("schema")
        schemas[normalize_media(media)] = (
            registry.schema(raw_schema, f"{media_where}/schema") if raw_schema is not None else None
        )
    return _build(
        RequestBody, where,
        required=bool(body.get("required", False)),
        content=schemas,
        description=_text(body.get("description"), f"{where}/description"),
    )


def _responses(raw: Any, registry: RefRegistry, where: str) -> dict[str, ResponseSpec]:
    result = {}
    for code, resp in _mapping(raw, "'responses'", where).items():
        resp_where = f"{where}/{_escape(str(code))}"
        resp = _mapping(registry.deref(resp), f"response {code}", resp_where)
        content = _mapping(resp.get("content"), "'content'", f"{resp_where}/content")
        media = min(content, key=media_rank) if content else None
        raw_schema = None
        if media:
            media_where = f"{resp_where}/content/{_escape(media)}"
            raw_schema = _mapping(content[media], f"media type {media!r}", media_where).get("schema")
        schema = registry.schema(raw_schema, resp_where) if raw_schema is not None else None
        result[str(code)] = _build(
            ResponseSpec, resp_where,
            description=_text(resp.get("description"), f"{resp_where}/description"),
            media_type=normalize_media(media) if media else None,
            schema=schema,
        )
    return result


def _security_scheme(name: str, raw: dict, where: str) -> SecurityScheme:
    return _build(
        SecurityScheme, where,
        name=name,
        type=_text(raw.get("type"), f"{where}/type"),
        scheme=_text(raw.get("scheme"), f"{where}/scheme").lower() or None,
        param_name=raw.get("name"),
        location=raw.get("in"),
    )


def _effective_security(raw_op: dict, doc: dict, schemes: dict[str, SecurityScheme], where: str) -> list[str]:
    if "security" in raw_op:
        requirements = _sequence(raw_op["security"], "'security'", f"{where}/security")
    else:
        requirements = _sequence(doc.get("security"), "'security'", "#/security")
    for requirement in requirements:
        if not requirement:
            return []  # anonymous access is allowed
        if not isinstance(requirement, dict):
            raise MalformedSpec("security requirement must be a mapping", f"{where}/security")
        names = [n for n in requirement if n in schemes]
        if names:
            return names
    return []


def _security_params(names: list[str], schemes: dict[str, SecurityScheme],
                     existing: dict[tuple[str, str], Param]) -> list[Param]:
    params = []
    for name in names:
        scheme = schemes[name]
        if scheme.type == "apiKey" and scheme.param_name and scheme.location in ("header", "query", "cookie"):
            p = Param(name=scheme.param_name, location=scheme.location, required=True,
                      schema=PrimitiveSchema(type="string"), description=f"security: {name}",
                      security=True)
        else:
            p = Param(name="Authorization", location="header", required=True,
                      schema=PrimitiveSchema(type="string"), description=f"security: {name}",
                      security=True)
        if p.key not in existing and all(q.key != p.key for q in params):
            params.append(p)
    return params


def _servers(raw: Any) -> list[Server]:
    servers = []
    for i, entry in enumerate(_sequence(raw, "'servers'", "#/servers")):
        if not isinstance(entry, dict) or not isinstance(entry.get("url"), str):
            continue
        variables = _mapping(entry.get("variables"), "'variables'", f"#/servers/{i}/variables")

        def substitute(m: re.Match) -> str:
            var = variables.get(m.group(1))
            return str(var.get("default", "")) if isinstance(var, dict) else ""

        servers.append(
            _build(
                Server, f"#/servers/{i}",
                url=entry["url"],
                resolved_url=_SERVER_VAR.sub(substitute, entry["url"]),
                description=_text(entry.get("description"), f"#/servers/{i}/description"),
            )
        )
    return servers or [Server(url="/", resolved_url="/")]


def normalize_media(media: str) -> str:
    return media.split(";", 1)[0].strip().lower()


def is_json_like(media: str) -> bool:
    return media == "application/json" or media.endswith("+json") or "json" in media


def media_rank(media: str) -> int:
    norm = normalize_media(media)
    if is_json_like(norm) or norm in ("*/*", ""):
        return 0
    if norm == "application/x-www-form-urlencoded":
        return 1
    if norm == "multipart/form-data":
        return 2
    if norm.startswith("text/"):
        return 3
    return 4


def _escape(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


# -- re-serialization ---------------------------------------------------------


def dump_document(spec: Specification) -> dict:
    """Serialize a Specification back into an OpenAPI 3.0 document."""
    paths: dict = {}
    for template in spec.templates:
        item = paths.setdefault(template.path, {})
        for op in template.operations:
            raw_op: dict = {"responses": {}}
            if op.operation_id:
                raw_op["operationId"] = op.operation_id
            if op.summary:
                raw_op["summary"] = op.summary
            if op.tags:
                raw_op["tags"] = list(op.tags)
            params = [
                {
                    "name": p.name,
                    "in": p.location,
                    "required": p.required,
                    "schema": dump_schema(p.schema_) if p.schema_ is not None else {},
                }
                for p in op.parameters if not p.security
            ]
            if params:
                raw_op["parameters"] = params
            if op.request_body is not None:
                raw_op["requestBody"] = {
                    "required": op.request_body.required,
                    "content": {
                        media: ({"schema": dump_schema(s)} if s is not None else {})
                        for media, s in op.request_body.content.items()
                    },
                }
            for code, resp in op.responses.items():
                raw_resp: dict = {"description": resp.description}
                if resp.media_type:
                    raw_resp["content"] = {
                        resp.media_type: {"schema": dump_schema(resp.schema_)} if resp.schema_ else {}
                    }
                raw_op["responses"][code] = raw_resp
            if not raw_op["responses"]:
                raw_op["responses"] = {"default": {"description": ""}}
            item[op.method.lower()] = raw_op

    prefix = "#/components/schemas/"
    schemas = {
        pointer[len(prefix):].replace("~1", "/").replace("~0", "~"): dump_schema(node)
        for pointer, node in spec.schemas.items() if pointer.startswith(prefix)
    }
    doc = {
        "openapi": "3.0.3",
        "info": {"title": spec.title, "version": spec.version},
        "servers": [{"url": s.resolved_url} for s in spec.servers],
        "paths": paths,
    }
    if schemas:
        doc["components"] = {"schemas": schemas}
    return doc


def dump_schema(node: SchemaNode) -> dict:
    out: dict = {}
    if isinstance(node, RefSchema):
        return {"$ref": node.pointer}
    if isinstance(node, PrimitiveSchema):
        if node.type:
            out["type"] = node.type
        for attr, key in (("format", "format"), ("minimum", "minimum"), ("maximum", "maximum"),
                          ("multiple_of", "multipleOf"), ("min_length", "minLength"),
                          ("max_length", "maxLength"), ("pattern", "pattern")):
            value = getattr(node, attr)
            if value is not None:
                out[key] = value
        if node.exclusive_minimum is not None:
            out["minimum"] = node.exclusive_minimum
            out["exclusiveMinimum"] = True
        if node.exclusive_maximum is not None:
            out["maximum"] = node.exclusive_maximum
            out["exclusiveMaximum"] = True
        if node.enum is not None:
            out["enum"] = list(node.enum)
    elif isinstance(node, ObjectSchema):
        out["type"] = "object"
        if node.properties:
            out["properties"] = {k: dump_schema(v) for k, v in node.properties.items()}
        if node.required:
            out["required"] = list(node.required)
        if node.additional_properties is not True:
            ap = node.additional_properties
            out["additionalProperties"] = ap if isinstance(ap, bool) else dump_schema(ap)
    elif isinstance(node, ArraySchema):
        out["type"] = "array"
        out["items"] = dump_schema(node.items) if node.items is not None else {}
        if node.min_items is not None:
            out["minItems"] = node.min_items
        if node.max_items is not None:
            out["maxItems"] = node.max_items
        if node.unique_items:
            out["uniqueItems"] = True
    elif isinstance(node, UnionSchema):
        out[node.mode] = [dump_schema(b) for b in node.branches]
    if node.nullable:
        out["nullable"] = True
    if node.read_only:
        out["readOnly"] = True
    if node.write_only:
        out["writeOnly"] = True
    if node.example is not None:
        out["example"] = node.example
    if node.default is not None:
        out["default"] = node.default
    if node.description:
        out["description"] = node.description
    return out
