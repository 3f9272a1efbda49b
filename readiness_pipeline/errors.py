"""
Error taxonomy for the readiness pipeline.

Every error raised by the pipeline derives from ReadinessError so callers
(the web layer) can map them to responses:

- ConfigurationError: missing settings, no active rule set, no credentials.
  Never retried; an operator has to act.
- NotFoundError: unknown issue, rule or rule set id.
- UpstreamError: Issue Provider, messaging or question-generation failure.
  Batch operations log and continue; single actions surface it.
- PatternError: malformed rule regex. Caught per rule by the scoring engine.
- ValidationError: rejected input, raised before any mutation.
"""


class ReadinessError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ReadinessError):
    """Settings or rule set are missing or incomplete."""


class NoDestinationError(ConfigurationError):
    """No messaging destination could be resolved for an issue."""


class NotFoundError(ReadinessError):
    """Referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class UpstreamError(ReadinessError):
    """A collaborator (Jira, Slack, LLM) call failed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class PatternError(ReadinessError):
    """Rule expected_pattern could not be compiled."""

    def __init__(self, rule_name: str, pattern: str, reason: str):
        super().__init__(f"Invalid pattern for rule '{rule_name}': {pattern!r} ({reason})")
        self.rule_name = rule_name
        self.pattern = pattern


class ValidationError(ReadinessError):
    """Input rejected before mutation."""
