from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, Field

from carematch_flow_core.enforcer import PolicyContext


class ResourceLink(BaseModel):
    title: str = Field(description="The display title for the resource link.")
    url: str = Field(
        description="An external https:// link or an internal app route such as /care-navigator.",
    )


def tool_data(tool_name: str, *, limit: int | None = None, default: Any = None) -> Callable[[PolicyContext], Any]:
    """Resolver returning the data of the last successful ``tool_name`` call in this invocation."""

    def resolve(ctx: PolicyContext) -> Any:
        result = ctx.trace.last_success(tool_name)
        if result is None or result.data is None:
            return default
        data = result.data
        if limit is not None and isinstance(data, list):
            return data[:limit]
        return data

    return resolve
