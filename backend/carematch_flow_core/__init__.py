from .backends import FlowBackend, FreeformBackend, SchemaToolBackend
from .composer import ContextComposer, Instruction
from .contracts import APOLOGY_TEXT, OutputContract
from .dispatcher import ToolDispatcher
from .enforcer import PolicyContext, PolicyViolation, enforce
from .errors import BackendUnavailable, FlowError, ToolNotDeclared
from .fallback import FallbackGenerationClient
from .flow import Flow
from .generation import DEFAULT_SAFETY, RELAXED_SAFETY, PrimaryGenerationClient, SafetyConfig
from .hooks import HookDecision, HookRunner
from .models import ExecutionContext, FlowRequest, FlowTrace, ToolInvocation, ToolResult
from .policy import PolicyEngine
from .registry import ToolRegistry, ToolSpec
from .scheduler import FollowUpWorker
from .settings import FlowSettings
from .severity import Severity, classify_severity
from .side_effects import SideEffectCoordinator

__all__ = [
    "APOLOGY_TEXT",
    "BackendUnavailable",
    "ContextComposer",
    "DEFAULT_SAFETY",
    "ExecutionContext",
    "FallbackGenerationClient",
    "Flow",
    "FlowBackend",
    "FlowError",
    "FlowRequest",
    "FlowSettings",
    "FlowTrace",
    "FollowUpWorker",
    "FreeformBackend",
    "HookDecision",
    "HookRunner",
    "Instruction",
    "OutputContract",
    "PolicyContext",
    "PolicyEngine",
    "PolicyViolation",
    "PrimaryGenerationClient",
    "RELAXED_SAFETY",
    "SafetyConfig",
    "SchemaToolBackend",
    "Severity",
    "SideEffectCoordinator",
    "ToolDispatcher",
    "ToolInvocation",
    "ToolNotDeclared",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "classify_severity",
    "enforce",
]
