"""
Error taxonomy.

Every error carries a stable machine-readable `code` and a structured
`context`, so callers (and the API layer) can act on the failure without
parsing messages.
"""

from typing import Any, Dict, List, Optional


class ForgeError(Exception):
    """Base class for all portal-forge errors."""

    code = "forge_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "context": self.context}


class IntentParsingError(ForgeError):
    """Request text is blank or names no capability. Re-prompt the user."""

    code = "intent_parsing_error"

    def __init__(self, message: str, text: Optional[str] = None):
        super().__init__(message, text=text)
        self.text = text


class UnsupportedTypeError(ForgeError):
    code = "unsupported_type"

    def __init__(self, phase: Any, artifact_type: str):
        phase_name = getattr(phase, "value", str(phase))
        super().__init__(
            f"Template type '{artifact_type}' is not supported in phase '{phase_name}'",
            phase=phase_name,
            type=artifact_type,
        )
        self.phase = phase
        self.artifact_type = artifact_type


class CompositeNotSupportedError(ForgeError):
    code = "composite_not_supported"

    def __init__(self, phase: Any):
        phase_name = getattr(phase, "value", str(phase))
        super().__init__(
            f"Composite templates are not supported in phase '{phase_name}'",
            phase=phase_name,
        )
        self.phase = phase


class ValidationFailureError(ForgeError):
    """One or more block-level rules were violated."""

    code = "validation_failure"

    def __init__(self, violations: List[Any]):
        ids = [v.rule_id for v in violations]
        super().__init__(
            f"Blocking validation rules violated: {', '.join(ids)}",
            rule_ids=ids,
            violations=[v.model_dump(mode="json") for v in violations],
        )
        self.violations = violations

    @property
    def rule_ids(self) -> List[str]:
        return [v.rule_id for v in self.violations]


class TemplateRenderingError(ForgeError):
    """Skeleton or documentation rendering failed. Recoverable."""

    code = "template_rendering_error"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, path=path)
        self.path = path


class ExternalCallError(ForgeError):
    """A collaborator call failed. Only transient failures are retried."""

    code = "external_call_error"

    def __init__(self, operation: str, message: str, transient: bool = True):
        super().__init__(
            f"{operation} failed: {message}",
            operation=operation,
            transient=transient,
        )
        self.operation = operation
        self.transient = transient


class WorkflowStateError(ForgeError):
    """An illegal move in the workflow state machine."""

    code = "workflow_state_error"


class WorkflowFailedError(ForgeError):
    """The GitOps workflow ended in FAILED or ROLLED_BACK."""

    code = "workflow_failed"

    def __init__(
        self,
        transition: Optional[str],
        record: Any,
        cause: Optional[BaseException] = None,
        cancelled: bool = False,
    ):
        state = getattr(record, "state", None)
        reason = "cancelled" if cancelled else str(cause) if cause else "unknown error"
        super().__init__(
            f"Workflow failed at '{transition}': {reason}",
            transition=transition,
            state=getattr(state, "value", state),
            cancelled=cancelled,
        )
        self.transition = transition
        self.record = record
        self.cause = cause
        self.cancelled = cancelled


class InvalidTransitionError(ForgeError):
    """A registry update would lower a capability's maturity."""

    code = "invalid_transition"

    def __init__(self, capability_id: str, current: Any, requested: Any):
        current_name = getattr(current, "value", current)
        requested_name = getattr(requested, "value", requested)
        super().__init__(
            f"Cannot move capability '{capability_id}' from {current_name} "
            f"down to {requested_name}",
            capability_id=capability_id,
            current=current_name,
            requested=requested_name,
        )
        self.capability_id = capability_id
        self.current = current
        self.requested = requested


class CapabilityNotFoundError(ForgeError):
    code = "capability_not_found"

    def __init__(self, capability_id: str):
        super().__init__(
            f"Capability '{capability_id}' is not registered",
            capability_id=capability_id,
        )
        self.capability_id = capability_id


class CapabilityConflictError(ForgeError):
    """Registration would overwrite an entry with a different type."""

    code = "capability_conflict"

    def __init__(self, conflicts: List[Any], resolutions: List[Any]):
        names = sorted({c.artifact_name for c in conflicts})
        super().__init__(
            f"Conflicting template types registered for: {', '.join(names)}",
            conflicts=[c.model_dump(mode="json") for c in conflicts],
            resolutions=[r.model_dump(mode="json") for r in resolutions],
        )
        self.conflicts = conflicts
        self.resolutions = resolutions
