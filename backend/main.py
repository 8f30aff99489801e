from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
from concurrent.futures import Executor
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from carematch_flow_core import (
    ExecutionContext,
    FallbackGenerationClient,
    FlowSettings,
    FollowUpWorker,
    FreeformBackend,
    HookDecision,
    HookRunner,
    PolicyEngine,
    PrimaryGenerationClient,
    SchemaToolBackend,
    SideEffectCoordinator,
    ToolDispatcher,
    ToolResult,
    ToolSpec,
)
from carematch_flow_core.side_effects import ANONYMOUS_USER
from carematch_flows import (
    AssistantFlow,
    AssistantOutput,
    AssistantRequest,
    CareNavigationFlow,
    CareNavigationOutput,
    CareNavigationRequest,
    CoachFlow,
    CoachOutput,
    CoachRequest,
    DocumentFlow,
    DocumentOutput,
    DocumentRequest,
    InsightsFlow,
    InsightsOutput,
    InsightsRequest,
    MentalHealthFlow,
    MentalHealthOutput,
    MentalHealthRequest,
)
from carematch_tools import (
    CareMatchToolset,
    build_assistant_tools,
    build_care_navigation_tools,
    build_mental_health_tools,
)
from storage import AuditLog, EmergencyAlertStore, NotificationStore, ScheduledJobStore, SQLiteStore

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()

logging.basicConfig(
    level=os.getenv("CAREMATCH_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class CareMatchApp:
    """Wires storage, tools, generation backends and the six flows together."""

    identity_required_tools = {"book_appointment"}

    def __init__(self, settings: FlowSettings | None = None, *, executor: Executor | None = None) -> None:
        self.settings = settings or FlowSettings.from_env()
        self.db = SQLiteStore(self.settings.db_path)
        self.notifications = NotificationStore(self.db)
        self.alerts = EmergencyAlertStore(self.db)
        self.jobs = ScheduledJobStore(self.db)
        self.audit = AuditLog(self.db)

        self.coordinator = SideEffectCoordinator(
            notifications=self.notifications,
            alerts=self.alerts,
            jobs=self.jobs,
            audit=self.audit,
            executor=executor,
        )
        self.worker = FollowUpWorker(jobs=self.jobs, notifications=self.notifications)

        self.toolset = CareMatchToolset.from_settings(self.settings)
        self.policy = PolicyEngine(denylist=set(self.settings.disabled_tools))
        self.hooks = HookRunner()
        self.hooks.add_before(self._before_tool_call)
        self.hooks.add_after(self._after_tool_call)
        self.dispatcher = ToolDispatcher(policy=self.policy, hooks=self.hooks)

        backends = {
            "primary": SchemaToolBackend(PrimaryGenerationClient(self.settings), self.dispatcher),
            "fallback": FreeformBackend(FallbackGenerationClient(self.settings)),
        }
        shared: dict[str, Any] = {
            "backends": backends,
            "coordinator": self.coordinator,
            "default_provider": self.settings.default_provider,
        }
        directory = self.toolset.directory
        self.flows = {
            "assistant": AssistantFlow(directory=directory, tools=build_assistant_tools(self.toolset), **shared),
            "coach": CoachFlow(**shared),
            "care_navigation": CareNavigationFlow(
                directory=directory,
                tools=build_care_navigation_tools(self.toolset),
                **shared,
            ),
            "document": DocumentFlow(**shared),
            "mental_health": MentalHealthFlow(tools=build_mental_health_tools(self.toolset), **shared),
            "insights": InsightsFlow(**shared),
        }

    def _before_tool_call(self, ctx: ExecutionContext, tool: ToolSpec, payload: dict[str, Any]) -> HookDecision:
        if tool.name in self.identity_required_tools and ctx.user_id == ANONYMOUS_USER:
            return HookDecision(
                allowed=False,
                code="identity_required",
                message="Sign in to book appointments.",
            )
        return HookDecision(allowed=True)

    def _after_tool_call(self, ctx: ExecutionContext, tool: ToolSpec, payload: dict[str, Any], result: ToolResult) -> None:
        self.audit.append(
            event_type="tool_outcome",
            details={
                "tool": tool.name,
                "status": result.status,
                "errors": result.errors,
                "request_id": ctx.request_id,
            },
            user_id=ctx.user_id,
            flow=ctx.flow,
        )


container = CareMatchApp()
app = FastAPI(title="CareMatch Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate or not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    if not auth_header:
        return ANONYMOUS_USER
    raw = auth_header.replace("Bearer", "", 1).strip()
    if not raw:
        return ANONYMOUS_USER
    # Bearer tokens are opaque here; long ones are hashed into a bounded id.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


def _require_identified(authorization: str | None, x_user_id: str | None) -> str:
    user_id = resolve_user_id(authorization, x_user_id)
    if user_id == ANONYMOUS_USER:
        raise HTTPException(status_code=401, detail="Missing Authorization")
    return user_id


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/flows/assistant", response_model=AssistantOutput)
def run_assistant(
    payload: AssistantRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    return container.flows["assistant"].run(payload, user_id=resolve_user_id(authorization, x_user_id))


@app.post("/flows/coach", response_model=CoachOutput)
def run_coach(
    payload: CoachRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    return container.flows["coach"].run(payload, user_id=resolve_user_id(authorization, x_user_id))


@app.post("/flows/care-navigation", response_model=CareNavigationOutput)
def run_care_navigation(
    payload: CareNavigationRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    return container.flows["care_navigation"].run(payload, user_id=resolve_user_id(authorization, x_user_id))


@app.post("/flows/document", response_model=DocumentOutput)
def run_document(
    payload: DocumentRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    return container.flows["document"].run(payload, user_id=resolve_user_id(authorization, x_user_id))


@app.post("/flows/mental-health", response_model=MentalHealthOutput)
def run_mental_health(
    payload: MentalHealthRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    return container.flows["mental_health"].run(payload, user_id=resolve_user_id(authorization, x_user_id))


@app.post("/flows/insights", response_model=InsightsOutput)
def run_insights(
    payload: InsightsRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    return container.flows["insights"].run(payload, user_id=resolve_user_id(authorization, x_user_id))


@app.get("/notifications")
def get_notifications(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = _require_identified(authorization, x_user_id)
    return {"notifications": container.notifications.list_for_user(user_id)}


@app.get("/alerts/emergency")
def get_emergency_alerts(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = _require_identified(authorization, x_user_id)
    return {"alerts": container.alerts.list_for_user(user_id)}


@app.post("/jobs/run-due")
def run_due_jobs(limit: int = 50, x_worker_token: str | None = Header(default=None)):
    expected = container.settings.worker_token
    if not expected:
        raise HTTPException(status_code=503, detail="Job runner token is not configured.")
    if not x_worker_token or not hmac.compare_digest(x_worker_token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid worker token")
    delivered = container.worker.run_due(limit=max(1, min(limit, 500)))
    return {"delivered": delivered}
