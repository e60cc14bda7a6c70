"""Error hierarchy for the agent execution engine.

Every error raised by the controllers carries the stage it was raised in
and, where one exists, the underlying cause, so callers can tell transient
capability failures apart from structural or parse failures.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all engine errors."""

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        component: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.component = component
        self.cause = cause

    def __str__(self) -> str:
        parts = []
        if self.component:
            parts.append(self.component)
        if self.stage:
            parts.append(self.stage)
        prefix = f"[{'/'.join(parts)}] " if parts else ""
        if self.cause is not None:
            return f"{prefix}{self.message}: {self.cause}"
        return f"{prefix}{self.message}"

    @classmethod
    def wrap(
        cls,
        err: BaseException,
        message: str | None = None,
        *,
        stage: str | None = None,
        component: str | None = None,
    ) -> AgentError:
        """Wrap an arbitrary exception, leaving engine errors untouched."""
        if isinstance(err, AgentError):
            return err
        text = message or str(err) or type(err).__name__
        return cls(text, stage=stage, component=component, cause=err)


class ConfigurationError(AgentError):
    """Invalid setup: missing model, unknown tool names, bad specialist map."""


class ParseError(AgentError):
    """A model response could not be interpreted."""

    def __init__(self, message: str, *, raw: str = "", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.raw = raw


class PlanParseError(ParseError):
    """Plan creation or plan update output was not valid plan JSON."""


class FeedbackParseError(ParseError):
    """Feedback evaluation output was not valid feedback JSON."""


class StepMutationError(AgentError):
    """A plan revision operation was rejected; the revision is aborted."""

    def __init__(self, message: str, *, step_id: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.step_id = step_id


class CapabilityError(AgentError):
    """Failure of an external capability (generation or tool invocation)."""


class GenerationError(CapabilityError):
    """The text-generation capability failed."""


class ToolInvocationError(CapabilityError):
    """A tool raised while being invoked."""

    def __init__(self, message: str, *, tool_name: str, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class MalformedJSONError(AgentError):
    """The streaming extractor received input that is not valid JSON."""

    def __init__(self, message: str, *, position: int | None = None, **kwargs) -> None:
        kwargs.setdefault("component", "extractor")
        super().__init__(message, **kwargs)
        self.position = position


class RunCancelledError(AgentError):
    """The caller's cancellation signal was observed mid-run."""
