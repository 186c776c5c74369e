"""Manifest-driven tool dispatch with argument validation and delivery routing."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from relay.errors import ToolExecutionError
from relay.schemas import (
    DeliveryClass,
    EndMessage,
    LanguageMessage,
    OutgoingMessage,
    PlayMessage,
    SendDigitsMessage,
    SilenceDetectionMessage,
    ToolResult,
)

if TYPE_CHECKING:  # pragma: no cover
    from prompts.catalog import AssetCatalog
    from relay.response_engine import StreamingResponseEngine

LOGGER = logging.getLogger(__name__)

_IMMEDIATE_TYPES = (SendDigitsMessage, PlayMessage, LanguageMessage, SilenceDetectionMessage)
_DELAYED_TYPES = (EndMessage,)


@dataclass
class ToolContext:
    """Session handles a tool implementation may act on."""

    call_sid: str | None
    engine: StreamingResponseEngine | None = None
    catalog: AssetCatalog | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


ToolImplementation = Callable[[dict[str, Any], ToolContext], Union[ToolResult, Awaitable[ToolResult]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]
    delivery: DeliveryClass | None = None

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def parse_manifest(manifest: Mapping[str, Any] | None) -> dict[str, ToolSpec]:
    """Turn a manifest document into tool specs keyed by name."""

    specs: dict[str, ToolSpec] = {}
    for entry in (manifest or {}).get("tools", []):
        function = entry.get("function") or {}
        name = function.get("name")
        if not name:
            LOGGER.warning("Skipping manifest entry without a function name: %s", entry)
            continue
        delivery = entry.get("delivery")
        try:
            delivery_class = DeliveryClass(delivery) if delivery else None
        except ValueError:
            LOGGER.warning("Unknown delivery class %r for tool %s, deriving from result", delivery, name)
            delivery_class = None
        parameters = function.get("parameters") or {"type": "object", "properties": {}}
        try:
            Draft7Validator.check_schema(parameters)
        except SchemaError as exc:
            LOGGER.warning("Skipping tool %s with invalid argument schema: %s", name, exc.message)
            continue
        specs[name] = ToolSpec(
            name=name,
            description=function.get("description", ""),
            parameters=parameters,
            delivery=delivery_class,
        )
    return specs


class ToolRouter:
    """Validates and executes model-requested tools for one session."""

    def __init__(
        self,
        implementations: Mapping[str, ToolImplementation],
        manifest: Mapping[str, Any] | None = None,
    ) -> None:
        self._implementations = dict(implementations)
        self._specs: dict[str, ToolSpec] = {}
        self.load_manifest(manifest)

    def load_manifest(self, manifest: Mapping[str, Any] | None) -> None:
        specs = parse_manifest(manifest)
        for name in list(specs):
            if name not in self._implementations:
                LOGGER.warning("Tool %s is declared in the manifest but has no implementation", name)
                del specs[name]
        self._specs = specs
        LOGGER.info("Loaded tool manifest with %d tools", len(self._specs))

    @property
    def tool_names(self) -> list[str]:
        return list(self._specs)

    def openai_tools(self) -> list[dict[str, Any]]:
        return [spec.to_openai() for spec in self._specs.values()]

    def validate(self, name: str, arguments: Any) -> dict[str, Any]:
        """Return parsed arguments or raise ToolExecutionError."""

        spec = self._specs.get(name)
        if spec is None:
            raise ToolExecutionError(f"Unknown tool: {name}", tool_name=name)

        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as exc:
                raise ToolExecutionError(
                    f"Arguments for {name} are not valid JSON: {exc.msg}", tool_name=name
                ) from exc
        if not isinstance(arguments, dict):
            raise ToolExecutionError(f"Arguments for {name} must be a JSON object", tool_name=name)

        errors = list(Draft7Validator(spec.parameters).iter_errors(arguments))
        if errors:
            details = []
            for error in errors[:5]:
                path = ".".join(str(p) for p in error.absolute_path) or "root"
                details.append(f"{path}: {error.message}")
            raise ToolExecutionError(
                f"Argument validation failed for {name}: {'; '.join(details)}", tool_name=name
            )
        return arguments

    def classify(self, name: str, outgoing: OutgoingMessage | None) -> DeliveryClass:
        if outgoing is None:
            return DeliveryClass.NONE
        spec = self._specs.get(name)
        if spec is not None and spec.delivery is not None:
            return spec.delivery
        if isinstance(outgoing, _DELAYED_TYPES):
            return DeliveryClass.DELAYED
        if isinstance(outgoing, _IMMEDIATE_TYPES):
            return DeliveryClass.IMMEDIATE
        return DeliveryClass.NONE

    async def execute(self, name: str, arguments: Any, context: ToolContext) -> ToolResult:
        """Run a tool, never raising: failures come back as unsuccessful results."""

        try:
            parsed = self.validate(name, arguments)
        except ToolExecutionError as exc:
            LOGGER.warning("Rejected tool call: %s", exc.detail)
            return ToolResult.failure(exc.detail)

        LOGGER.info("Executing tool %s for call %s", name, context.call_sid)
        try:
            result = self._implementations[name](parsed, context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            LOGGER.exception("Tool %s raised: %s", name, exc)
            return ToolResult.failure(f"Tool {name} failed: {exc}")

        if not isinstance(result, ToolResult):
            LOGGER.error("Tool %s returned %r instead of a ToolResult", name, type(result))
            return ToolResult.failure(f"Tool {name} returned an invalid result")

        return result.model_copy(update={"delivery": self.classify(name, result.outgoing_message)})
