"""Error taxonomy for specification loading and request synthesis.

Loading errors are fatal to one document but never to the process.
Synthesis errors are per-operation and get collected next to the
requests that did synthesize. Unmatched traffic is not an error.
"""


class SpecError(Exception):
    """A specification document cannot be turned into a Specification."""

    kind = "spec_error"

    def __init__(self, reason: str, pointer: str | None = None):
        self.reason = reason
        self.pointer = pointer
        message = f"{reason} (at {pointer})" if pointer else reason
        super().__init__(message)


class MalformedSpec(SpecError):
    kind = "malformed"


class UnsupportedVersion(SpecError):
    kind = "unsupported_version"


class UnresolvableReference(SpecError):
    kind = "unresolvable_reference"


class SynthesisError(Exception):
    """An operation's schemas cannot be turned into concrete requests."""

    kind = "synthesis_error"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        message = f"{reason} (field {field})" if field else reason
        super().__init__(message)


class UnsupportedSchemaShape(SynthesisError):
    kind = "unsupported_schema_shape"


class ConflictingConstraints(SpecError, SynthesisError):
    """allOf branches that cannot hold at the same time."""

    kind = "conflicting_constraints"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        self.pointer = None
        message = f"{reason} (field {field})" if field else reason
        Exception.__init__(self, message)


class SessionClosed(RuntimeError):
    """The assessment session was torn down."""


class MalformedTraffic(ValueError):
    """A traffic capture file cannot be read as requests."""
