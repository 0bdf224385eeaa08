"""Reference registry: resolves $ref pointers and builds SchemaNode trees.

Every schema reachable through a pointer is built exactly once and
shared by all references to it. A reference back into a schema that is
still being built is a cycle; it becomes a RefSchema handle instead of
being unrolled.
"""

import logging
from typing import Any
from urllib.parse import unquote

from api_spec_drift.errors import MalformedSpec, UnresolvableReference
from api_spec_drift.parser.base import (
    ArraySchema,
    ObjectSchema,
    PrimitiveSchema,
    RefSchema,
    SchemaNode,
    UnionSchema,
)

logger = logging.getLogger(__name__)

PRIMITIVE_TYPES = ("string", "integer", "number", "boolean", "null")
COMPOSITION_KEYS = ("allOf", "oneOf", "anyOf")
ANNOTATION_KEYS = {"description", "example", "examples", "default", "title", "readOnly",
                   "writeOnly", "nullable", "deprecated", "xml", "externalDocs", "discriminator"}


def split_pointer(ref: str) -> list[str]:
    """Split an internal '#/a/b' reference into unescaped tokens."""
    if not ref.startswith("#"):
        raise UnresolvableReference("only document-internal references are supported", ref)
    fragment = unquote(ref[1:])
    if fragment in ("", "/"):
        return []
    if not fragment.startswith("/"):
        raise UnresolvableReference("malformed JSON pointer", ref)
    return [t.replace("~1", "/").replace("~0", "~") for t in fragment[1:].split("/")]


class RefRegistry:
    """Memoized pointer -> SchemaNode table for one document."""

    def __init__(self, doc: dict, cycle_depth: int = 1):
        self.doc = doc
        self.cycle_depth = cycle_depth
        self.schemas: dict[str, SchemaNode] = {}
        self._in_progress: list[str] = []

    def lookup(self, ref: str) -> Any:
        """Return the raw document value a pointer addresses."""
        node: Any = self.doc
        for token in split_pointer(ref):
            if isinstance(node, dict) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                raise UnresolvableReference("reference target does not exist", ref)
        return node

    def deref(self, raw: Any, seen: tuple[str, ...] = ()) -> Any:
        """Follow $ref chains on a non-schema object (parameter, body, response)."""
        while isinstance(raw, dict) and "$ref" in raw:
            ref = raw["$ref"]
            if ref in seen:
                raise UnresolvableReference("reference chain loops on itself", ref)
            seen = seen + (ref,)
            raw = self.lookup(ref)
        return raw

    def schema(self, raw: Any, where: str = "#") -> SchemaNode:
        """Build a SchemaNode from a raw schema object."""
        if raw is None or raw is True or raw == {}:
            return PrimitiveSchema()
        if raw is False:
            raise MalformedSpec("schema 'false' accepts nothing", where)
        if not isinstance(raw, dict):
            raise MalformedSpec(f"schema must be an object, got {type(raw).__name__}", where)

        if "$ref" in raw:
            return self.resolve(raw["$ref"])

        return self._build(raw, where)

    def resolve(self, ref: str) -> SchemaNode:
        """Resolve a schema pointer, memoized, cycle-safe."""
        if ref in self.schemas:
            return self.schemas[ref]
        if ref in self._in_progress:
            logger.debug("Cyclic schema reference %s (path: %s)", ref, " -> ".join(self._in_progress))
            return RefSchema(pointer=ref, depth_limit=self.cycle_depth)

        target = self.lookup(ref)
        self._in_progress.append(ref)
        try:
            node = self.schema(target, where=ref)
        finally:
            self._in_progress.pop()
        self.schemas[ref] = node
        return node

    def _build(self, raw: dict, where: str) -> SchemaNode:
        common = _annotations(raw)

        for key in COMPOSITION_KEYS:
            if key in raw:
                branches = raw[key]
                if not isinstance(branches, list) or not branches:
                    raise MalformedSpec(f"'{key}' must be a non-empty list", where)
                nodes = tuple(
                    self.schema(b, f"{where}/{key}/{i}") for i, b in enumerate(branches)
                )
                siblings = {k: v for k, v in raw.items() if k != key and k not in ANNOTATION_KEYS}
                union = UnionSchema(mode=key, branches=nodes, **common)
                if not siblings:
                    return union
                # type/properties next to a composition keyword constrain every branch
                rest = self._build(siblings, where)
                if key == "allOf":
                    return UnionSchema(mode="allOf", branches=(rest,) + nodes, **common)
                return UnionSchema(mode="allOf", branches=(rest, union), **common)

        raw_type = raw.get("type")
        if isinstance(raw_type, list):
            types = [t for t in raw_type if t != "null"]
            if "null" in raw_type:
                common["nullable"] = True
            if len(types) > 1:
                nodes = tuple(
                    self._build({**raw, "type": t}, f"{where}/type/{t}") for t in types
                )
                return UnionSchema(mode="anyOf", branches=nodes, **common)
            raw_type = types[0] if types else "null"
            raw = {**raw, "type": raw_type}

        if raw_type == "object" or (raw_type is None and ("properties" in raw or "additionalProperties" in raw)):
            return self._object(raw, where, common)
        if raw_type == "array" or (raw_type is None and "items" in raw):
            return self._array(raw, where, common)
        if raw_type is not None and raw_type not in PRIMITIVE_TYPES:
            raise MalformedSpec(f"unknown schema type {raw_type!r}", where)
        return self._primitive(raw, raw_type, common)

    def _object(self, raw: dict, where: str, common: dict) -> ObjectSchema:
        props = raw.get("properties") or {}
        if not isinstance(props, dict):
            raise MalformedSpec("'properties' must be a mapping", where)
        properties = {
            name: self.schema(sub, f"{where}/properties/{name}") for name, sub in props.items()
        }
        additional = raw.get("additionalProperties", True)
        if isinstance(additional, dict):
            additional = self.schema(additional, f"{where}/additionalProperties")
        elif not isinstance(additional, bool):
            raise MalformedSpec("'additionalProperties' must be a boolean or schema", where)
        return ObjectSchema(
            properties=properties,
            required=tuple(raw.get("required") or ()),
            additional_properties=additional,
            **common,
        )

    def _array(self, raw: dict, where: str, common: dict) -> ArraySchema:
        items = raw.get("items")
        return ArraySchema(
            items=self.schema(items, f"{where}/items") if items is not None else None,
            min_items=raw.get("minItems"),
            max_items=raw.get("maxItems"),
            unique_items=bool(raw.get("uniqueItems", False)),
            **common,
        )

    def _primitive(self, raw: dict, raw_type: str | None, common: dict) -> PrimitiveSchema:
        minimum = raw.get("minimum")
        maximum = raw.get("maximum")
        exclusive_minimum = raw.get("exclusiveMinimum")
        exclusive_maximum = raw.get("exclusiveMaximum")
        # 3.0 style: boolean flag modifying minimum/maximum
        if exclusive_minimum is True:
            exclusive_minimum, minimum = minimum, None
        elif exclusive_minimum is False:
            exclusive_minimum = None
        if exclusive_maximum is True:
            exclusive_maximum, maximum = maximum, None
        elif exclusive_maximum is False:
            exclusive_maximum = None

        enum = raw.get("enum")
        if "const" in raw and enum is None:
            enum = [raw["const"]]
        return PrimitiveSchema(
            type=raw_type,
            format=raw.get("format"),
            minimum=minimum,
            maximum=maximum,
            exclusive_minimum=exclusive_minimum,
            exclusive_maximum=exclusive_maximum,
            multiple_of=raw.get("multipleOf"),
            min_length=raw.get("minLength"),
            max_length=raw.get("maxLength"),
            pattern=raw.get("pattern"),
            enum=tuple(enum) if enum is not None else None,
            **common,
        )


def _annotations(raw: dict) -> dict:
    example = raw.get("example")
    if example is None and isinstance(raw.get("examples"), list) and raw["examples"]:
        example = raw["examples"][0]
    return {
        "description": raw.get("description") or "",
        "example": example,
        "default": raw.get("default"),
        "nullable": bool(raw.get("nullable", False)),
        "read_only": bool(raw.get("readOnly", False)),
        "write_only": bool(raw.get("writeOnly", False)),
    }
