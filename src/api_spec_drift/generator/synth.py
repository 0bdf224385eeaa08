"""Schema-driven request synthesis.

For one operation, a baseline request is drafted from its parameter and
body schemas. Strategies then derive request variants from it:

- valid: the baseline, plus one request per extra oneOf/anyOf branch.
- boundary: at-limit and one-past-limit values per constraint, every
  enum member plus one non-member, and one omission per required field.
- malformed: wrong-typed values, oversized arrays and injection probes,
  capped per operation and sampled with a fixed seed.

Boundary and malformed variants are drawn from every union branch, each
applied to its own branch draft. Nothing is sent; the host executes the
returned descriptors.
"""

import copy
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator
from urllib.parse import quote

from api_spec_drift.config import DriftConfig
from api_spec_drift.errors import SynthesisError, UnsupportedSchemaShape
from api_spec_drift.generator.base import (
    Strategy,
    SynthesisBatch,
    SynthesisFailure,
    SynthesizedRequest,
)
from api_spec_drift.generator.merge import RefStack, SchemaResolver
from api_spec_drift.generator.values import (
    non_member,
    numeric_boundaries,
    stable_seed,
    string_of_length,
    string_probes,
    type_mismatches,
    valid_primitive,
)
from api_spec_drift.parser.base import (
    ArraySchema,
    ObjectSchema,
    OperationEntry,
    Param,
    PrimitiveSchema,
    SchemaNode,
    Specification,
    UnionSchema,
)

logger = logging.getLogger(__name__)

PARAM_LOCATIONS = ("path", "query", "header", "cookie")
KnownValues = dict[tuple[str, str], str]

_CUT = object()  # value position dropped at the cycle expansion limit
_OMIT = object()  # variant marker: remove the field


@dataclass(frozen=True)
class _Field:
    path: tuple  # ("body", "items", 0, "name") or ("query", "limit")
    schema: SchemaNode
    stack: RefStack
    required: bool
    draft: dict = field(default=None, compare=False)  # the draft this field was walked in
    note: str = ""

    @property
    def location(self) -> str:
        return self.path[0]

    @property
    def label(self) -> str:
        return _label(self.path)


@dataclass(frozen=True)
class _Variant:
    path: tuple
    value: Any
    description: str


def synthesize(spec: Specification, operation: OperationEntry, strategy: Strategy | str,
               config: DriftConfig | None = None,
               known_values: KnownValues | None = None) -> Iterator[SynthesizedRequest]:
    """Return a lazy, finite sequence of requests for one operation.

    The baseline is drafted eagerly, so schema problems on the primary
    path raise here rather than mid-iteration.
    """
    strategy = Strategy(strategy)
    planner = _Planner(spec, operation, config or DriftConfig(), known_values or {})
    planner.draft_baseline()
    if strategy is Strategy.VALID:
        return planner.valid()
    if strategy is Strategy.BOUNDARY:
        return planner.boundary()
    return planner.malformed()


def synthesize_all(spec: Specification, strategy: Strategy | str, config: DriftConfig | None = None,
                   known_values: KnownValues | None = None,
                   operations: Iterable[OperationEntry] | None = None) -> SynthesisBatch:
    """Synthesize every operation, collecting failures instead of aborting."""
    batch = SynthesisBatch()
    for op in operations if operations is not None else spec.operations:
        try:
            batch.requests.extend(synthesize(spec, op, strategy, config, known_values))
        except SynthesisError as e:
            logger.warning("Synthesis failed for %s: %s", op.key, e)
            batch.failures.append(SynthesisFailure(operation_key=op.key, reason=str(e), error_kind=e.kind))
    return batch


def binding_status(spec: Specification, operation: OperationEntry,
                   known_values: KnownValues | None = None) -> str:
    """'ready' when every required parameter can be bound, else 'missing_required'."""
    known_values = known_values or {}
    for param in operation.parameters:
        if param.security and param.required and param.key not in known_values:
            return "missing_required"
    try:
        _Planner(spec, operation, DriftConfig(), known_values).draft_baseline()
    except SynthesisError:
        return "missing_required"
    return "ready"


class _Planner:
    def __init__(self, spec: Specification, operation: OperationEntry, config: DriftConfig,
                 known_values: KnownValues):
        self.spec = spec
        self.op = operation
        self.config = config
        self.known = known_values
        self.resolver = SchemaResolver(spec)
        self.draft: dict = {}
        self.union_sites: dict[tuple, int] = {}

    # -- baseline -------------------------------------------------------------

    def draft_baseline(self) -> dict:
        self.union_sites = {}
        self.draft = self._draft({}, record=True)
        return self.draft

    def _draft(self, choices: dict[tuple, int], record: bool = False) -> dict:
        draft: dict = {loc: {} for loc in PARAM_LOCATIONS}
        for param in self.op.parameters:
            value = self._param_value(param, choices, record)
            if value is not _CUT:
                draft[param.location][param.name] = value

        body = self.op.request_body
        if body is None or body.media_type is None:
            draft["body"] = _OMIT
        elif body.schema_ is None:
            draft["body"] = None
        else:
            value = self._value(body.schema_, (), ("body",), choices, record)
            draft["body"] = None if value is _CUT else value
        return draft

    def _param_value(self, param: Param, choices: dict, record: bool) -> Any:
        harvested = self.known.get(param.key)
        if param.security:
            return harvested if harvested is not None else _credential_placeholder(param, self.spec)
        if param.example is not None:
            return param.example
        if harvested is not None and not _has_declared_value(param.schema_):
            return harvested
        return self._value(param.schema_, (), (param.location, param.name), choices, record)

    def _value(self, node: SchemaNode | None, stack: RefStack, path: tuple, choices: dict,
               record: bool) -> Any:
        resolved = self.resolver.effective(node, stack, _label(path))
        if resolved is None:
            return _CUT
        node, stack = resolved

        if isinstance(node, UnionSchema):
            if record:
                self.union_sites[path] = len(node.branches)
            index = choices.get(path, 0)
            return self._value(node.branches[index], stack, path, choices, record)

        if isinstance(node, PrimitiveSchema):
            return valid_primitive(node, _name(path), path[0])

        if isinstance(node, ObjectSchema):
            if isinstance(node.example, dict):
                return copy.deepcopy(node.example)
            out = {}
            for name, sub in node.properties.items():
                resolved_sub = self.resolver.effective(sub, stack, _label(path + (name,)))
                if resolved_sub is not None and resolved_sub[0].read_only:
                    continue
                value = self._value(sub, stack, path + (name,), choices, record)
                if value is _CUT:
                    if name in node.required:
                        out[name] = None
                    continue
                out[name] = value
            return out

        if isinstance(node, ArraySchema):
            if isinstance(node.example, list):
                return copy.deepcopy(node.example)
            count = max(node.min_items or 0, 1)
            if node.max_items is not None:
                count = min(count, node.max_items)
            items = []
            for i in range(count):
                value = self._value(node.items, stack, path + (i,), choices, record and i == 0)
                if value is _CUT:
                    return []
                if node.unique_items and isinstance(value, int) and not isinstance(value, bool):
                    value += i
                items.append(value)
            return items

        raise UnsupportedSchemaShape(f"unsupported schema kind {node.kind}", _label(path))

    # -- field walk -----------------------------------------------------------

    def _fields(self) -> Iterator[_Field]:
        yield from self._fields_of(self.draft, {})
        # variants for the later union branches; only the fields under the site differ
        for site, count in list(self.union_sites.items()):
            for index in range(1, count):
                choices = {site: index}
                draft = self._draft(choices)
                for field in self._fields_of(draft, choices, f" (union branch {index})"):
                    if field.path[:len(site)] == site:
                        yield field

    def _fields_of(self, draft: dict, choices: dict, note: str = "") -> Iterator[_Field]:
        for param in self.op.parameters:
            if param.name not in draft[param.location]:
                continue
            if param.security:
                yield _Field((param.location, param.name), PrimitiveSchema(type="string"), (), True, draft, note)
                continue
            yield from self._walk(param.schema_, draft[param.location][param.name], (),
                                  (param.location, param.name), param.required, draft, choices, note)
        body = self.op.request_body
        if body is not None and body.schema_ is not None and draft["body"] is not _OMIT:
            yield from self._walk(body.schema_, draft["body"], (), ("body",), body.required, draft, choices, note)

    def _walk(self, node: SchemaNode | None, value: Any, stack: RefStack, path: tuple, required: bool,
              draft: dict, choices: dict, note: str) -> Iterator[_Field]:
        resolved = self.resolver.effective(node, stack, _label(path))
        if resolved is None:
            return
        node, stack = resolved
        while isinstance(node, UnionSchema):
            resolved = self.resolver.effective(node.branches[choices.get(path, 0)], stack, _label(path))
            if resolved is None:
                return
            node, stack = resolved

        yield _Field(path, node, stack, required, draft, note)
        if isinstance(node, ObjectSchema) and isinstance(value, dict):
            for name, sub in node.properties.items():
                if name in value:
                    yield from self._walk(sub, value[name], stack, path + (name,), name in node.required,
                                          draft, choices, note)
        elif isinstance(node, ArraySchema) and isinstance(value, list) and value:
            yield from self._walk(node.items, value[0], stack, path + (0,), False, draft, choices, note)

    # -- strategies -----------------------------------------------------------

    def valid(self) -> Iterator[SynthesizedRequest]:
        yield self._render(self.draft, Strategy.VALID, None, "baseline request from declared schemas")
        for site, count in list(self.union_sites.items()):
            for index in range(1, count):
                draft = self._draft({site: index})
                yield self._render(draft, Strategy.VALID, _label(site), f"union branch {index} at {_label(site)}")

    def boundary(self) -> Iterator[SynthesizedRequest]:
        if self.op.request_body is not None and self.op.request_body.required and self.draft["body"] is not _OMIT:
            yield self._render(self._apply(_Variant(("body",), _OMIT, "")), Strategy.BOUNDARY, "body",
                               "required request body omitted")
        for field in self._fields():
            for variant in self._boundary_variants(field):
                if _empty_segment(variant):
                    continue
                yield self._render(self._apply(variant, field.draft), Strategy.BOUNDARY, field.label,
                                   variant.description + field.note)

    def malformed(self) -> Iterator[SynthesizedRequest]:
        candidates = [(field, v) for field in self._fields() for v in self._malformed_variants(field)
                      if not _empty_segment(v)]
        cap = self.config.malformed_cap
        if len(candidates) > cap:
            rng = random.Random(stable_seed(f"{self.config.seed}:{self.op.key}"))
            keep = sorted(rng.sample(range(len(candidates)), cap))
            candidates = [candidates[i] for i in keep]
        for field, variant in candidates:
            yield self._render(self._apply(variant, field.draft), Strategy.MALFORMED, _label(variant.path),
                               variant.description + field.note)

    def _boundary_variants(self, field: _Field) -> Iterator[_Variant]:
        node = field.schema
        label = field.label
        if field.required and len(field.path) > 1 and field.location != "path":
            yield _Variant(field.path, _OMIT, f"required field {label} omitted")

        if isinstance(node, PrimitiveSchema):
            if node.enum:
                for member in node.enum:
                    yield _Variant(field.path, member, f"{label} = enum member {member!r}")
                yield _Variant(field.path, non_member(node.enum), f"{label} outside enum")
            if node.type in ("integer", "number"):
                for value, what in numeric_boundaries(node):
                    yield _Variant(field.path, value, f"{label} {what} ({value})")
            if node.min_length is not None:
                yield _Variant(field.path, string_of_length(node, node.min_length),
                               f"{label} at minLength {node.min_length}")
                if node.min_length > 0:
                    yield _Variant(field.path, string_of_length(node, node.min_length - 1),
                                   f"{label} below minLength {node.min_length}")
            if node.max_length is not None:
                yield _Variant(field.path, string_of_length(node, node.max_length),
                               f"{label} at maxLength {node.max_length}")
                yield _Variant(field.path, string_of_length(node, node.max_length + 1),
                               f"{label} above maxLength {node.max_length}")

        elif isinstance(node, ArraySchema):
            item = self._sample_item(field)
            if node.min_items is not None:
                yield _Variant(field.path, [item] * node.min_items, f"{label} at minItems {node.min_items}")
                if node.min_items > 0:
                    yield _Variant(field.path, [item] * (node.min_items - 1),
                                   f"{label} below minItems {node.min_items}")
            if node.max_items is not None:
                yield _Variant(field.path, [item] * node.max_items, f"{label} at maxItems {node.max_items}")
                yield _Variant(field.path, [item] * (node.max_items + 1),
                               f"{label} above maxItems {node.max_items}")

    def _malformed_variants(self, field: _Field) -> Iterator[_Variant]:
        node = field.schema
        label = field.label
        on_wire = field.location in ("header", "cookie")
        if isinstance(node, PrimitiveSchema):
            for value, what in type_mismatches(node):
                yield _Variant(field.path, value, f"{label}: {what}")
            if node.type in ("string", None) and not node.enum:
                for value, what in string_probes(node):
                    if on_wire and any(ord(c) < 32 for c in value):
                        continue
                    yield _Variant(field.path, value, f"{label}: {what}")
        elif isinstance(node, ArraySchema):
            size = max(self.config.oversize_array_length, (node.max_items or 0) + 1)
            yield _Variant(field.path, [self._sample_item(field)] * size, f"{label}: oversized array ({size})")
            yield _Variant(field.path, "not-an-array", f"{label}: string instead of array")
        elif isinstance(node, ObjectSchema):
            yield _Variant(field.path, "not-an-object", f"{label}: string instead of object")
            if node.additional_properties is False and isinstance(_get(field.draft, field.path), dict):
                yield _Variant(field.path + ("x-unexpected-property",), 42,
                               f"{label}: undeclared property with additionalProperties false")

    def _sample_item(self, field: _Field) -> Any:
        current = _get(field.draft, field.path)
        if isinstance(current, list) and current:
            return current[0]
        node = field.schema
        value = self._value(node.items, field.stack, field.path + (0,), {}, False) \
            if isinstance(node, ArraySchema) else _CUT
        return None if value is _CUT else value

    # -- rendering ------------------------------------------------------------

    def _apply(self, variant: _Variant, draft: dict | None = None) -> dict:
        draft = copy.deepcopy(self.draft if draft is None else draft)
        _set(draft, variant.path, variant.value)
        return draft

    def _render(self, draft: dict, strategy: Strategy, target: str | None, description: str) -> SynthesizedRequest:
        path = self.op.path
        for name, value in draft["path"].items():
            path = path.replace("{" + name + "}", quote(_wire(value), safe=""))

        query = {
            name: [_wire(v) for v in value] if isinstance(value, list) else _wire(value)
            for name, value in draft["query"].items() if value is not None
        }
        headers = {name: _wire(value) for name, value in draft["header"].items() if value is not None}
        cookies = {name: _wire(value) for name, value in draft["cookie"].items() if value is not None}

        body = draft["body"]
        content_type = None
        if body is _OMIT:
            body = None
        elif self.op.request_body is not None:
            content_type = self.op.request_body.media_type

        return SynthesizedRequest(
            operation_key=self.op.key,
            operation_id=self.op.operation_id,
            strategy=strategy,
            method=self.op.method,
            path=path,
            url=_server_url(self.spec, self.config.server_index) + path,
            query=query,
            headers=headers,
            cookies=cookies,
            body=body,
            content_type=content_type,
            target=target,
            description=description,
        )


def _get(draft: dict, path: tuple) -> Any:
    node: Any = draft[path[0]]
    for key in path[1:]:
        try:
            node = node[key]
        except (KeyError, IndexError, TypeError):
            return None
    return node


def _set(draft: dict, path: tuple, value: Any) -> None:
    if len(path) == 1:
        draft[path[0]] = value
        return
    container: Any = draft[path[0]]
    for key in path[1:-1]:
        container = container[key]
    last = path[-1]
    if value is _OMIT:
        if isinstance(container, dict):
            container.pop(last, None)
        return
    container[last] = value


def _label(path: tuple) -> str:
    return ".".join(str(p) for p in path)


def _name(path: tuple) -> str:
    for part in reversed(path):
        if isinstance(part, str):
            return part
    return ""


def _wire(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _empty_segment(variant: _Variant) -> bool:
    """True when the variant would leave a path segment empty."""
    return variant.path[0] == "path" and len(variant.path) == 2 and _wire(variant.value) == ""


def _has_declared_value(schema: SchemaNode | None) -> bool:
    if schema is None:
        return False
    return schema.example is not None or schema.default is not None


def _credential_placeholder(param: Param, spec: Specification) -> str:
    scheme_name = param.description.removeprefix("security: ")
    scheme = spec.security_schemes.get(scheme_name)
    if param.name == "Authorization" and scheme is not None:
        if scheme.type == "http" and scheme.scheme == "basic":
            return "Basic dXNlcjpwYXNzd29yZA=="
        return "Bearer " + format(stable_seed(scheme.name), "016x")
    return format(stable_seed(param.name), "016x")


def _server_url(spec: Specification, index: int) -> str:
    if not spec.servers:
        return ""
    server = spec.servers[min(index, len(spec.servers) - 1)]
    return server.resolved_url.rstrip("/")
