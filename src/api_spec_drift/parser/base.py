"""Canonical data model for a loaded API specification.

OpenAPI 3.x and Swagger 2.0 documents are both normalized into these
models. A Specification is built once and then only read.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

HTTP_METHODS = ("GET", "PUT", "POST", "DELETE", "OPTIONS", "HEAD", "PATCH", "TRACE")


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = ""
    example: Any = None
    default: Any = None
    nullable: bool = False
    read_only: bool = False
    write_only: bool = False


class PrimitiveSchema(_Node):
    """A scalar value. ``type`` None means any JSON value is accepted."""

    kind: Literal["primitive"] = "primitive"
    type: str | None = None  # string / integer / number / boolean / null
    format: str | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: int | float | None = None
    exclusive_maximum: int | float | None = None
    multiple_of: int | float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    enum: tuple[Any, ...] | None = None

    def has_constraints(self) -> bool:
        return any(
            v is not None
            for v in (
                self.type, self.format, self.minimum, self.maximum,
                self.exclusive_minimum, self.exclusive_maximum, self.multiple_of,
                self.min_length, self.max_length, self.pattern, self.enum,
            )
        )


class ObjectSchema(_Node):
    kind: Literal["object"] = "object"
    properties: dict[str, "SchemaNode"] = {}
    required: tuple[str, ...] = ()
    additional_properties: Union[bool, "SchemaNode"] = True


class ArraySchema(_Node):
    kind: Literal["array"] = "array"
    items: "SchemaNode | None" = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False


class UnionSchema(_Node):
    kind: Literal["union"] = "union"
    mode: Literal["oneOf", "anyOf", "allOf"]
    branches: tuple["SchemaNode", ...]


class RefSchema(_Node):
    """A back-edge in a cyclic schema graph, expanded lazily up to ``depth_limit`` levels."""

    kind: Literal["ref"] = "ref"
    pointer: str
    depth_limit: int = 1

    @property
    def name(self) -> str:
        return self.pointer.rsplit("/", 1)[-1]


SchemaNode = Annotated[
    Union[PrimitiveSchema, ObjectSchema, ArraySchema, UnionSchema, RefSchema],
    Field(discriminator="kind"),
]

ObjectSchema.model_rebuild()
ArraySchema.model_rebuild()
UnionSchema.model_rebuild()


class Param(BaseModel):
    """A single API parameter (query, path, header, or cookie)."""

    name: str
    location: str  # query / path / header / cookie
    required: bool
    schema_: SchemaNode | None = Field(default=None, alias="schema")
    description: str = ""
    example: Any = None
    security: bool = False  # derived from a security scheme

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key(self) -> tuple[str, str]:
        name = self.name.lower() if self.location in ("header", "cookie") else self.name
        return self.location, name

    @property
    def param_type(self) -> str:
        if isinstance(self.schema_, PrimitiveSchema):
            return self.schema_.type or "string"
        if self.schema_ is None:
            return "string"
        return self.schema_.kind


class RequestBody(BaseModel):
    required: bool = False
    content: dict[str, SchemaNode | None] = {}  # media type -> schema, preferred first
    description: str = ""

    @property
    def media_type(self) -> str | None:
        return next(iter(self.content), None)

    @property
    def schema_(self) -> SchemaNode | None:
        media = self.media_type
        return self.content[media] if media else None


class ResponseSpec(BaseModel):
    description: str = ""
    media_type: str | None = None
    schema_: SchemaNode | None = Field(default=None, alias="schema")

    model_config = ConfigDict(populate_by_name=True)


class SecurityScheme(BaseModel):
    name: str
    type: str  # apiKey / http / oauth2 / openIdConnect
    scheme: str | None = None  # http: bearer / basic
    param_name: str | None = None  # apiKey
    location: str | None = None  # apiKey: header / query / cookie


class Server(BaseModel):
    url: str  # as declared, may hold {variables}
    resolved_url: str
    description: str = ""

    @property
    def base_path(self) -> str:
        url = self.resolved_url
        if "://" in url:
            url = url.split("://", 1)[1]
            url = "/" + url.split("/", 1)[1] if "/" in url else "/"
        return url.rstrip("/")


class OperationEntry(BaseModel):
    """One HTTP method on one path template."""

    method: str
    path: str
    operation_id: str | None = None
    summary: str = ""
    tags: list[str] = []
    parameters: list[Param] = []
    request_body: RequestBody | None = None
    responses: dict[str, ResponseSpec] = {}
    security: list[str] = []  # names of the schemes in the first satisfiable requirement
    deprecated: bool = False

    @property
    def key(self) -> str:
        return f"{self.method} {self.path}"

    def params_in(self, location: str) -> list[Param]:
        return [p for p in self.parameters if p.location == location]


class PathTemplate(BaseModel):
    path: str
    operations: list[OperationEntry] = []

    @property
    def placeholders(self) -> list[str]:
        return placeholder_names(self.path)

    def operation(self, method: str) -> OperationEntry | None:
        method = method.upper()
        for op in self.operations:
            if op.method == method:
                return op
        return None


class Specification(BaseModel):
    """Reference-resolved, version-independent view of one API document."""

    title: str = ""
    version: str = ""
    source_version: str  # "2.0", "3.0.3", "3.1.0", ...
    servers: list[Server] = []
    templates: list[PathTemplate] = []
    schemas: dict[str, SchemaNode] = {}  # canonical pointer -> shared node
    security_schemes: dict[str, SecurityScheme] = {}

    @property
    def operations(self) -> list[OperationEntry]:
        return [op for t in self.templates for op in t.operations]

    def operation(self, key: str) -> OperationEntry | None:
        """Look up an operation by ``"METHOD /path"`` key or by operationId."""
        for op in self.operations:
            if op.key == key or (op.operation_id and op.operation_id == key):
                return op
        return None

    def resolve(self, node: SchemaNode) -> SchemaNode:
        """Follow a RefSchema to its registered target (single hop)."""
        if isinstance(node, RefSchema):
            return self.schemas[node.pointer]
        return node

    @property
    def base_paths(self) -> list[str]:
        seen: list[str] = []
        for server in self.servers:
            bp = server.base_path
            if bp and bp not in seen:
                seen.append(bp)
        return seen


def placeholder_names(path: str) -> list[str]:
    names = []
    for segment in path.split("/"):
        start = segment.find("{")
        while start != -1:
            end = segment.find("}", start)
            if end == -1:
                break
            names.append(segment[start + 1:end])
            start = segment.find("{", end)
    return names
