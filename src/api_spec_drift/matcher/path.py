"""Structural path-template matching.

Templates and concrete paths are split on '/'. A template matches when
segment counts are equal, literal segments are identical and every
placeholder segment sees a non-empty token. When several templates
match, the one with the fewest placeholder segments wins; ties go to
the template declared first. Candidates are pre-sorted by that key, so
the first structural hit is the answer.
"""

import logging
import re
from dataclasses import dataclass
from typing import Sequence
from urllib.parse import unquote

from api_spec_drift.matcher.base import MatchResult, ObservedRequest
from api_spec_drift.matcher.params import check_parameters
from api_spec_drift.parser.base import PathTemplate, Specification

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^}]+)\}")


@dataclass(frozen=True)
class PathMatch:
    template: PathTemplate
    bindings: dict[str, str]


@dataclass(frozen=True)
class _Compiled:
    template: PathTemplate
    order: int
    segments: tuple  # str literal, or (regex, placeholder names) per segment
    placeholder_segments: int


def split_path(path: str) -> list[str]:
    path = path.split("?", 1)[0].split("#", 1)[0]
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path.split("/")[1:] if path.startswith("/") else path.split("/")


def _compile_segment(segment: str):
    if "{" not in segment:
        return segment
    pattern = ""
    pos = 0
    for m in _PLACEHOLDER.finditer(segment):
        pattern += re.escape(segment[pos:m.start()])
        pattern += f"(?P<{_group_name(m.group(1))}>.+?)"
        pos = m.end()
    pattern += re.escape(segment[pos:])
    return re.compile(pattern + r"\Z"), tuple(_PLACEHOLDER.findall(segment))


def _group_name(placeholder: str) -> str:
    # regex group names must be identifiers; keep a reversible mapping
    return "p_" + "".join(c if c.isalnum() else f"_{ord(c):x}_" for c in placeholder)


class PathMatcher:
    """Immutable matcher over an ordered sequence of path templates."""

    def __init__(self, templates: Sequence[PathTemplate], base_paths: Sequence[str] = ()):
        compiled = []
        for order, template in enumerate(templates):
            segments = tuple(_compile_segment(s) for s in split_path(template.path))
            holes = sum(1 for s in segments if not isinstance(s, str))
            compiled.append(_Compiled(template, order, segments, holes))
        self._candidates = sorted(compiled, key=lambda c: (c.placeholder_segments, c.order))
        self._base_paths = tuple(bp for bp in base_paths if bp and bp != "/")

    @classmethod
    def for_spec(cls, spec: Specification) -> "PathMatcher":
        return cls(spec.templates, spec.base_paths)

    def match_path(self, path: str) -> PathMatch | None:
        """Return the best template for a concrete path, or None."""
        for candidate_path in self._candidate_paths(path):
            tokens = split_path(candidate_path)
            for compiled in self._candidates:
                bindings = _bind(compiled, tokens)
                if bindings is not None:
                    return PathMatch(compiled.template, bindings)
        return None

    def match(self, request: ObservedRequest) -> MatchResult:
        """Attribute an observed request to an operation."""
        status = request.response.status if request.response is not None else None
        found = self.match_path(request.path)
        if found is None:
            logger.debug("Shadow traffic: %s %s", request.method, request.path)
            return MatchResult(
                method=request.method,
                concrete_path=request.path,
                strategy=request.strategy,
                status=status,
            )

        operation = found.template.operation(request.method)
        issues = check_parameters(operation, request, found.bindings) if operation is not None else []
        if operation is None:
            logger.debug("Undeclared method %s on %s", request.method, found.template.path)
        return MatchResult(
            method=request.method,
            concrete_path=request.path,
            template=found.template.path,
            operation=operation,
            path_params=found.bindings,
            issues=issues,
            strategy=request.strategy,
            status=status,
        )

    def _candidate_paths(self, path: str) -> list[str]:
        # server base paths are tried stripped first, then the raw path
        out = []
        for bp in self._base_paths:
            if path == bp or path.startswith(bp + "/"):
                out.append(path[len(bp):] or "/")
        out.append(path)
        return out


def _bind(compiled: _Compiled, tokens: list[str]) -> dict[str, str] | None:
    if len(tokens) != len(compiled.segments):
        return None
    bindings: dict[str, str] = {}
    for segment, token in zip(compiled.segments, tokens):
        decoded = unquote(token)
        if isinstance(segment, str):
            if decoded != segment and token != segment:
                return None
            continue
        if not token:
            return None
        regex, names = segment
        m = regex.match(decoded)
        if m is None:
            return None
        for name, value in zip(names, m.groups()):
            bindings[name] = value
    return bindings


def match(templates: Sequence[PathTemplate], path: str) -> PathMatch | None:
    """Match one concrete path against templates without base-path handling."""
    return PathMatcher(templates).match_path(path)
