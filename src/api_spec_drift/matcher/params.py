"""Presence and type checks for parameters of a matched request.

Only presence and scalar type are checked. Value constraints are the
synthesizer's business.
"""

from api_spec_drift.matcher.base import ObservedRequest, ParamIssue
from api_spec_drift.parser.base import ArraySchema, OperationEntry, Param, PrimitiveSchema

_BOOLEANS = {"true", "false", "1", "0"}


def check_parameters(operation: OperationEntry, request: ObservedRequest,
                     bindings: dict[str, str]) -> list[ParamIssue]:
    """Return the problems found with the request's path/query/header/cookie parameters."""
    issues = []
    cookies = request.cookies
    query_lower = {k.lower(): v for k, v in request.query.items()}

    for param in operation.parameters:
        if param.security:
            continue
        values = _values_for(param, request, bindings, cookies, query_lower)
        if not values:
            if param.required:
                issues.append(ParamIssue(location=param.location, name=param.name, problem="missing"))
            continue
        for value in values:
            if not value_matches_type(param, value):
                issues.append(
                    ParamIssue(location=param.location, name=param.name, problem="type", value=value)
                )
                break
    return issues


def _values_for(param: Param, request: ObservedRequest, bindings: dict[str, str],
                cookies: dict[str, str], query_lower: dict[str, list[str]]) -> list[str]:
    if param.location == "path":
        value = bindings.get(param.name)
        return [value] if value else []
    if param.location == "query":
        if param.name in request.query:
            return request.query[param.name]
        return query_lower.get(param.name.lower(), [])
    if param.location == "header":
        value = request.header(param.name)
        return [value] if value is not None else []
    if param.location == "cookie":
        value = cookies.get(param.name.lower())
        return [value] if value is not None else []
    return []


def value_matches_type(param: Param, raw: str) -> bool:
    schema = param.schema_
    if isinstance(schema, ArraySchema):
        item = schema.items
        if not isinstance(item, PrimitiveSchema):
            return True
        return all(scalar_matches(item.type, part) for part in raw.split(",") if part != "")
    if isinstance(schema, PrimitiveSchema):
        return scalar_matches(schema.type, raw)
    return True


def scalar_matches(type_name: str | None, raw: str) -> bool:
    if type_name == "integer":
        try:
            int(raw)
        except ValueError:
            return False
        return True
    if type_name == "number":
        try:
            float(raw)
        except ValueError:
            return False
        return True
    if type_name == "boolean":
        return raw.lower() in _BOOLEANS
    return True
