from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel, TypeAdapter

from .errors import ToolNotDeclared
from .models import ExecutionContext
from .schema import gemini_schema


ToolHandler = Callable[[ExecutionContext, Any], dict[str, Any]]


@dataclass
class ToolSpec:
    name: str
    description: str
    input_model: type[BaseModel]
    output_type: Any
    handler: ToolHandler
    transactional: bool = False
    _output_adapter: TypeAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._output_adapter = TypeAdapter(self.output_type)

    def declaration(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": gemini_schema(self.input_model),
        }

    def parse_input(self, args: dict[str, Any]) -> BaseModel:
        return self.input_model.model_validate(args or {})

    def parse_output(self, value: Any) -> Any:
        validated = self._output_adapter.validate_python(value)
        return self._output_adapter.dump_python(validated, mode="json")


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._aliases: dict[str, str] = {}

    def register(self, tool: ToolSpec) -> None:
        self._tools[tool.name] = tool

    def add_alias(self, alias: str, target: str) -> None:
        self._aliases[alias] = target

    def resolve(self, name: str) -> ToolSpec:
        canonical = self._aliases.get(name, name)
        tool = self._tools.get(canonical)
        if not tool:
            raise ToolNotDeclared(f"Tool not declared for this flow: {name}")
        return tool

    def list_names(self) -> list[str]:
        return sorted(self._tools.keys())

    def specs(self) -> list[ToolSpec]:
        return [self._tools[name] for name in self.list_names()]

    def without(self, *names: str) -> "ToolRegistry":
        narrowed = ToolRegistry()
        for tool in self._tools.values():
            if tool.name not in names:
                narrowed.register(tool)
        for alias, target in self._aliases.items():
            if target not in names:
                narrowed.add_alias(alias, target)
        return narrowed

    def __len__(self) -> int:
        return len(self._tools)
