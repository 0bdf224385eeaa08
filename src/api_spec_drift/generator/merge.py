"""Schema resolution for synthesis: cyclic-ref expansion and allOf merging.

allOf branches are intersected: tighter constraints win, compatible
types narrow (integer + number -> integer). Constraints that cannot
hold together raise ConflictingConstraints.
"""

import math

from api_spec_drift.errors import ConflictingConstraints, UnsupportedSchemaShape
from api_spec_drift.parser.base import (
    ArraySchema,
    ObjectSchema,
    PrimitiveSchema,
    RefSchema,
    SchemaNode,
    Specification,
    UnionSchema,
)

RefStack = tuple[str, ...]


class SchemaResolver:
    """Turns raw SchemaNodes into synthesizable ones for one Specification."""

    def __init__(self, spec: Specification):
        self.spec = spec

    def effective(self, node: SchemaNode | None, stack: RefStack = (), field: str = "") \
            -> tuple[SchemaNode, RefStack] | None:
        """Expand refs and merge allOf. Returns None where a cycle is cut off."""
        if node is None:
            return PrimitiveSchema(), stack
        while isinstance(node, RefSchema):
            if stack.count(node.pointer) >= node.depth_limit:
                return None
            if node.pointer not in self.spec.schemas:
                raise UnsupportedSchemaShape(f"dangling reference {node.pointer}", field)
            stack = stack + (node.pointer,)
            node = self.spec.schemas[node.pointer]
        if isinstance(node, UnionSchema):
            if not node.branches:
                raise UnsupportedSchemaShape(f"empty {node.mode}", field)
            if node.mode == "allOf":
                merged = None
                for branch in node.branches:
                    resolved = self.effective(branch, stack, field)
                    if resolved is None:
                        continue
                    merged = resolved[0] if merged is None else self.merge(merged, resolved[0], stack, field)
                if merged is None:
                    return None
                return _with_annotations(merged, node), stack
        return node, stack

    def first_branch(self, node: SchemaNode, stack: RefStack, field: str) -> tuple[SchemaNode, RefStack] | None:
        """Collapse oneOf/anyOf to its first branch (used inside allOf merges)."""
        resolved = self.effective(node, stack, field)
        while resolved is not None and isinstance(resolved[0], UnionSchema) and resolved[0].mode != "allOf":
            resolved = self.effective(resolved[0].branches[0], resolved[1], field)
        return resolved

    def merge(self, a: SchemaNode, b: SchemaNode, stack: RefStack, field: str) -> SchemaNode:
        ra = self.first_branch(a, stack, field)
        rb = self.first_branch(b, stack, field)
        if ra is None or rb is None:
            # one side was cut at the cycle limit
            return (ra or rb or (a, stack))[0]
        a, b = ra[0], rb[0]

        if _is_any(a):
            return _with_annotations(b, a)
        if _is_any(b):
            return _with_annotations(a, b)
        if a.kind != b.kind:
            raise ConflictingConstraints(f"cannot combine {_describe(a)} with {_describe(b)}", field or None)

        if isinstance(a, PrimitiveSchema):
            return merge_primitives(a, b, field)
        if isinstance(a, ObjectSchema):
            return self._merge_objects(a, b, stack, field)
        if isinstance(a, ArraySchema):
            return self._merge_arrays(a, b, stack, field)
        raise UnsupportedSchemaShape(f"cannot merge {a.kind} schemas", field or None)

    def _merge_objects(self, a: ObjectSchema, b: ObjectSchema, stack: RefStack, field: str) -> ObjectSchema:
        properties = dict(a.properties)
        for name, sub in b.properties.items():
            child = f"{field}.{name}" if field else name
            properties[name] = self.merge(properties[name], sub, stack, child) if name in properties else sub
        required = tuple(dict.fromkeys(a.required + b.required))

        ap_a, ap_b = a.additional_properties, b.additional_properties
        if ap_a is False or ap_b is False:
            additional = False
        elif ap_a is True:
            additional = ap_b
        else:
            additional = ap_a
        return ObjectSchema(
            properties=properties,
            required=required,
            additional_properties=additional,
            **_merged_annotations(a, b),
        )

    def _merge_arrays(self, a: ArraySchema, b: ArraySchema, stack: RefStack, field: str) -> ArraySchema:
        if a.items is not None and b.items is not None:
            items = self.merge(a.items, b.items, stack, f"{field}[]")
        else:
            items = a.items if a.items is not None else b.items
        min_items = _max(a.min_items, b.min_items)
        max_items = _min(a.max_items, b.max_items)
        if min_items is not None and max_items is not None and min_items > max_items:
            raise ConflictingConstraints(f"minItems {min_items} exceeds maxItems {max_items}", field or None)
        return ArraySchema(
            items=items,
            min_items=min_items,
            max_items=max_items,
            unique_items=a.unique_items or b.unique_items,
            **_merged_annotations(a, b),
        )


def merge_primitives(a: PrimitiveSchema, b: PrimitiveSchema, field: str = "") -> PrimitiveSchema:
    """Intersect two primitive schemas' constraints."""
    where = field or None

    if a.type is None or b.type is None or a.type == b.type:
        type_ = a.type or b.type
    elif {a.type, b.type} == {"integer", "number"}:
        type_ = "integer"
    else:
        raise ConflictingConstraints(f"type {a.type} conflicts with type {b.type}", where)

    if a.format and b.format and a.format != b.format:
        raise ConflictingConstraints(f"format {a.format} conflicts with format {b.format}", where)
    if a.pattern and b.pattern and a.pattern != b.pattern:
        raise ConflictingConstraints(f"patterns {a.pattern!r} and {b.pattern!r} cannot be intersected", where)

    multiple_of = a.multiple_of or b.multiple_of
    if a.multiple_of and b.multiple_of and a.multiple_of != b.multiple_of:
        if isinstance(a.multiple_of, int) and isinstance(b.multiple_of, int):
            multiple_of = math.lcm(a.multiple_of, b.multiple_of)
        else:
            big, small = max(a.multiple_of, b.multiple_of), min(a.multiple_of, b.multiple_of)
            remainder = big % small
            if not (math.isclose(remainder, 0, abs_tol=1e-9) or math.isclose(remainder, small)):
                raise ConflictingConstraints(f"multipleOf {a.multiple_of} conflicts with {b.multiple_of}", where)
            multiple_of = big

    enum = a.enum if b.enum is None else b.enum if a.enum is None else tuple(v for v in a.enum if v in b.enum)
    if enum is not None and not enum:
        raise ConflictingConstraints("enum intersection is empty", where)

    merged = PrimitiveSchema(
        type=type_,
        format=a.format or b.format,
        minimum=_max(a.minimum, b.minimum),
        maximum=_min(a.maximum, b.maximum),
        exclusive_minimum=_max(a.exclusive_minimum, b.exclusive_minimum),
        exclusive_maximum=_min(a.exclusive_maximum, b.exclusive_maximum),
        multiple_of=multiple_of,
        min_length=_max(a.min_length, b.min_length),
        max_length=_min(a.max_length, b.max_length),
        pattern=a.pattern or b.pattern,
        enum=enum,
        **_merged_annotations(a, b),
    )

    low = _max(merged.minimum, merged.exclusive_minimum)
    high = _min(merged.maximum, merged.exclusive_maximum)
    if low is not None and high is not None:
        exclusive = merged.exclusive_minimum == low or merged.exclusive_maximum == high
        if low > high or (exclusive and low == high):
            raise ConflictingConstraints(f"lower bound {low} exceeds upper bound {high}", where)
    if merged.min_length is not None and merged.max_length is not None and merged.min_length > merged.max_length:
        raise ConflictingConstraints(
            f"minLength {merged.min_length} exceeds maxLength {merged.max_length}", where
        )
    return merged


def _is_any(node: SchemaNode) -> bool:
    return isinstance(node, PrimitiveSchema) and not node.has_constraints()


def _describe(node: SchemaNode) -> str:
    if isinstance(node, PrimitiveSchema):
        return f"type {node.type or 'any'}"
    return f"type {node.kind}"


def _merged_annotations(a: SchemaNode, b: SchemaNode) -> dict:
    return {
        "description": a.description or b.description,
        "example": a.example if a.example is not None else b.example,
        "default": a.default if a.default is not None else b.default,
        "nullable": a.nullable and b.nullable,
        "read_only": a.read_only or b.read_only,
        "write_only": a.write_only or b.write_only,
    }


def _with_annotations(node: SchemaNode, source: SchemaNode) -> SchemaNode:
    updates = {}
    if source.example is not None and node.example is None:
        updates["example"] = source.example
    if source.default is not None and node.default is None:
        updates["default"] = source.default
    if source.description and not node.description:
        updates["description"] = source.description
    if source.read_only and not node.read_only:
        updates["read_only"] = True
    return node.model_copy(update=updates) if updates else node


def _max(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _min(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)
