# src/tokensim/core/definition.py
"""
Graph definition schema and validation.

A graph definition is a frozen pydantic model: a tuple of node configs
discriminated by ``kind``, plus group/tag metadata. Edits never mutate a
definition in place; they build and validate a replacement.

Formulas are parsed at validation time so a definition containing a
forbidden construct or a syntax error never loads.
"""

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from tokensim.contracts.enums import ActionKind, AggregationMethod, TriggerKind
from tokensim.contracts.errors import DefinitionValidationError


# Integer source bounds must fit a signed 64-bit draw
INT64_LIMIT = 2**63


def _check_formula(formula: str | None, what: str) -> str | None:
    """Parse a formula, converting parser errors into validation errors."""
    if formula is None:
        return formula

    from tokensim.engine.expression_parser import (
        ExpressionParser,
        ExpressionSecurityError,
        ExpressionSyntaxError,
    )

    try:
        ExpressionParser(formula)
    except ExpressionSyntaxError as e:
        raise ValueError(f"Invalid {what} syntax: {e}") from e
    except ExpressionSecurityError as e:
        raise ValueError(f"Forbidden construct in {what}: {e}") from e
    return formula


# === Ports ===


class OutputPort(BaseModel):
    """Named output routing tokens to a destination node."""

    model_config = {"frozen": True}

    name: str = Field(default="output", description="Output name, unique within the node")
    destination_node_id: str = Field(min_length=1, description="Receiving node id")
    destination_input_name: str | None = Field(
        default=None,
        description="Input buffer name on the receiving node (state machines only)",
    )


class InputPort(BaseModel):
    """Declared input of a node.

    For Process nodes, node_id names the upstream node whose tokens fill
    this input and alias is the name formulas use for it.
    """

    model_config = {"frozen": True}

    name: str = "input"
    node_id: str | None = None
    alias: str | None = None
    required: bool = True

    @property
    def key(self) -> str:
        """Name formulas use for this input."""
        return self.alias or self.node_id or self.name


class ProcessOutput(OutputPort):
    """Process output: a formula computed per firing."""

    formula: str = Field(min_length=1, description="Transformation formula")

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str) -> str:
        _check_formula(v, "formula")
        return v


# === Node configs ===


class _NodeBase(BaseModel):
    """Fields shared by every node kind."""

    model_config = {"frozen": True}

    node_id: str = Field(min_length=1)
    display_name: str = ""
    tags: tuple[str, ...] = ()
    group_id: str | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.node_id

    @property
    def outputs_list(self) -> tuple[OutputPort, ...]:
        return tuple(getattr(self, "outputs", ()))


class SourceConfig(_NodeBase):
    """Emits a root token with a random value every ``interval`` ticks."""

    kind: Literal["source"] = "source"
    interval: int = Field(default=1, gt=0, description="Ticks between emissions")
    value_min: int | float = 0
    value_max: int | float = 10
    outputs: tuple[OutputPort, ...] = ()

    @model_validator(mode="after")
    def validate_range(self) -> "SourceConfig":
        for bound in (self.value_min, self.value_max):
            if isinstance(bound, int):
                if not -INT64_LIMIT < bound < INT64_LIMIT:
                    raise ValueError(f"Integer bound {bound} is outside the 64-bit range")
            elif not math.isfinite(bound):
                raise ValueError(f"Bound {bound} is not finite")
        if self.value_min > self.value_max:
            raise ValueError(
                f"value_min ({self.value_min}) must not exceed value_max ({self.value_max})"
            )
        return self


class QueueAggregation(BaseModel):
    """How and when a queue reduces its buffer."""

    model_config = {"frozen": True}

    method: AggregationMethod = AggregationMethod.SUM
    window: int = Field(default=5, gt=0, description="Ticks between aggregation triggers")


class QueueConfig(_NodeBase):
    """Buffers tokens and periodically aggregates them into one."""

    kind: Literal["queue"] = "queue"
    inputs: tuple[InputPort, ...] = ()
    outputs: tuple[OutputPort, ...] = ()
    capacity: int | None = Field(default=None, gt=0, description="Input buffer capacity")
    aggregation: QueueAggregation = QueueAggregation()


class ProcessConfig(_NodeBase):
    """Joins one token from every input and computes formula outputs."""

    kind: Literal["process"] = "process"
    inputs: tuple[InputPort, ...] = Field(min_length=1)
    outputs: tuple[ProcessOutput, ...] = ()

    @field_validator("inputs")
    @classmethod
    def validate_inputs(cls, v: tuple[InputPort, ...]) -> tuple[InputPort, ...]:
        missing = [i for i, port in enumerate(v) if not port.node_id]
        if missing:
            raise ValueError(f"inputs {missing} must name an upstream node_id")
        keys = [port.key for port in v]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"Duplicate input aliases: {duplicates}")
        return v


class FsmAction(BaseModel):
    """Action run on state entry or exit."""

    model_config = {"frozen": True}

    action: ActionKind
    target: str | None = Field(
        default=None,
        description="Output name (emit) or variable name (set_variable/increment/decrement)",
    )
    formula: str | None = None
    value: Any = None

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str | None) -> str | None:
        return _check_formula(v, "action formula")

    @model_validator(mode="after")
    def validate_target(self) -> "FsmAction":
        if self.action != ActionKind.LOG and not self.target:
            raise ValueError(f"'{self.action.value}' action requires a target")
        return self


class FsmStateDef(BaseModel):
    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    is_initial: bool = False
    on_entry: tuple[FsmAction, ...] = ()
    on_exit: tuple[FsmAction, ...] = ()


class FsmTransition(BaseModel):
    """Transition between two declared states.

    Scenario files spell the endpoints ``from`` and ``to``.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    from_state: str = Field(alias="from")
    to_state: str = Field(alias="to")
    trigger: TriggerKind
    condition: str | None = None
    interval: int | None = Field(
        default=None,
        gt=0,
        description="Timer period in ticks; defaults to the engine's timer_interval",
    )

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: str | None) -> str | None:
        return _check_formula(v, "condition")

    @model_validator(mode="after")
    def validate_condition_present(self) -> "FsmTransition":
        if self.trigger == TriggerKind.CONDITION and not self.condition:
            raise ValueError("condition transitions require a condition")
        return self


class StateMachineDefinition(BaseModel):
    """User-declared states, transitions and initial variables."""

    model_config = {"frozen": True}

    states: tuple[FsmStateDef, ...] = ()
    transitions: tuple[FsmTransition, ...] = ()
    variables: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_references(self) -> "StateMachineDefinition":
        names = {s.name for s in self.states}
        if len(names) != len(self.states):
            raise ValueError("State names must be unique")
        if not names:
            return self
        for t in self.transitions:
            for endpoint in (t.from_state, t.to_state):
                if endpoint not in names:
                    raise ValueError(f"Transition references undeclared state '{endpoint}'")
        return self

    @property
    def initial_state(self) -> str:
        for state in self.states:
            if state.is_initial:
                return state.name
        if self.states:
            return self.states[0].name
        return "idle"

    def state(self, name: str) -> FsmStateDef | None:
        return next((s for s in self.states if s.name == name), None)


class FsmConfig(_NodeBase):
    """User-defined finite state machine."""

    kind: Literal["fsm"] = "fsm"
    inputs: tuple[InputPort, ...] = ()
    outputs: tuple[OutputPort, ...] = ()
    fsm: StateMachineDefinition = StateMachineDefinition()

    @model_validator(mode="after")
    def validate_emit_targets(self) -> "FsmConfig":
        output_names = {o.name for o in self.outputs}
        for state in self.fsm.states:
            for action in (*state.on_entry, *state.on_exit):
                if action.action == ActionKind.EMIT and action.target not in output_names:
                    raise ValueError(
                        f"State '{state.name}' emits to undeclared output '{action.target}'"
                    )
        return self


class EnhancedFsmConfig(_NodeBase):
    """Enhanced state machine.

    event_inputs, message_inputs, token_inputs, fsm and config are
    accepted as opaque data. Only the token buffer drain to Sinks runs.
    """

    kind: Literal["enhanced_fsm"] = "enhanced_fsm"
    inputs: tuple[InputPort, ...] = ()
    outputs: tuple[OutputPort, ...] = ()
    event_inputs: tuple[dict[str, Any], ...] = ()
    message_inputs: tuple[dict[str, Any], ...] = ()
    token_inputs: tuple[dict[str, Any], ...] = ()
    fsm: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)


class SinkConfig(_NodeBase):
    kind: Literal["sink"] = "sink"
    inputs: tuple[InputPort, ...] = ()


class ModuleConfig(_NodeBase):
    """Container node. sub_graph is carried but not executed."""

    kind: Literal["module"] = "module"
    inputs: tuple[InputPort, ...] = ()
    outputs: tuple[OutputPort, ...] = ()
    sub_graph: dict[str, Any] = Field(default_factory=dict)
    is_expanded: bool = False


NodeConfig = Annotated[
    SourceConfig
    | QueueConfig
    | ProcessConfig
    | FsmConfig
    | EnhancedFsmConfig
    | SinkConfig
    | ModuleConfig,
    Field(discriminator="kind"),
]


class GroupMetadata(BaseModel):
    """Grouping and tag metadata carried alongside the nodes."""

    model_config = {"frozen": True}

    enabled_tag_groups: tuple[str, ...] = ()
    active_filters: tuple[str, ...] = ()
    groups: dict[str, tuple[str, ...]] = Field(
        default_factory=dict,
        description="Group id -> member node ids",
    )


class GraphDefinition(BaseModel):
    """A complete, validated scenario."""

    model_config = {"frozen": True}

    scenario_id: str = "scenario"
    name: str = ""
    description: str = ""
    version: str = "1.0"
    nodes: tuple[NodeConfig, ...] = ()
    groups: GroupMetadata = GroupMetadata()

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "GraphDefinition":
        seen: set[str] = set()
        for node in self.nodes:
            if node.node_id in seen:
                raise ValueError(f"Duplicate node id '{node.node_id}'")
            seen.add(node.node_id)
        return self

    @property
    def node_ids(self) -> list[str]:
        return [n.node_id for n in self.nodes]

    def to_raw(self) -> dict[str, Any]:
        """Plain-data form suitable for re-validation or hashing."""
        return self.model_dump(mode="json", by_alias=True)

    def with_node_changes(self, node_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Raw definition with one node's fields replaced.

        Returns raw data rather than a model so the caller can run the
        result through validate_definition.
        """
        raw = self.to_raw()
        for node in raw["nodes"]:
            if node["node_id"] == node_id:
                node.update(changes)
                break
        return raw


# === Validation ===


@dataclass
class DefinitionValidation:
    """Outcome of validating raw definition data.

    Exactly one of definition / errors is meaningful: a definition is
    only present when errors is empty.
    """

    definition: GraphDefinition | None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.definition is not None


def format_validation_errors(error: ValidationError) -> list[str]:
    """Render pydantic errors as ``path: message`` strings."""
    messages = []
    for detail in error.errors():
        loc = ".".join(str(x) for x in detail["loc"])
        messages.append(f"{loc}: {detail['msg']}" if loc else detail["msg"])
    return messages


def validate_definition(raw: GraphDefinition | dict[str, Any]) -> DefinitionValidation:
    """Validate raw definition data, fail-closed.

    Schema errors and cross-node reference errors are collected together.
    Process cycles are reported as warnings: they are legal but can cascade
    without bound inside a tick.

    Args:
        raw: Mapping (e.g. parsed YAML) or an existing GraphDefinition

    Returns:
        DefinitionValidation with a definition only when there are no errors
    """
    from tokensim.core.dag import FlowGraph

    if isinstance(raw, GraphDefinition):
        raw = raw.to_raw()
    try:
        definition = GraphDefinition.model_validate(raw)
    except ValidationError as e:
        return DefinitionValidation(definition=None, errors=format_validation_errors(e))

    graph = FlowGraph.from_definition(definition)
    errors = graph.reference_errors()
    if errors:
        return DefinitionValidation(definition=None, errors=errors)

    warnings = [
        "Process cycle may cascade without bound: " + " -> ".join(cycle)
        for cycle in graph.process_cycles()
    ]
    return DefinitionValidation(definition=definition, warnings=warnings)


def load_definition_file(path: Path) -> GraphDefinition:
    """Load and validate a YAML or JSON scenario file.

    Raises:
        FileNotFoundError: If the file does not exist
        DefinitionValidationError: If the definition is invalid
    """
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise DefinitionValidationError([f"{path}: top level must be a mapping"])
    outcome = validate_definition(raw)
    if outcome.definition is None:
        raise DefinitionValidationError(outcome.errors)
    return outcome.definition
