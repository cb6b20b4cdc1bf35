"""Status codes, phases, and kinds shared across subsystem boundaries.

Phase enums are (str, Enum) so a node's current machine state can be
stored and compared as a plain string. FiniteStateMachine nodes use
user-declared state names, so StateMachineInfo.current_state is typed
as str everywhere.
"""

from enum import Enum


class NodeKind(str, Enum):
    """Kind tag of a node in a graph definition.

    The value is the ``kind`` discriminator used in scenario files.
    """

    SOURCE = "source"
    QUEUE = "queue"
    PROCESS = "process"
    FSM = "fsm"
    ENHANCED_FSM = "enhanced_fsm"
    SINK = "sink"
    MODULE = "module"


class SourcePhase(str, Enum):
    """Machine states of a Source node.

    generating and emitting are transient within a single tick.
    """

    IDLE = "source_idle"
    GENERATING = "source_generating"
    EMITTING = "source_emitting"


class QueuePhase(str, Enum):
    """Machine states of a Queue node."""

    IDLE = "queue_idle"
    ACCUMULATING = "queue_accumulating"
    PROCESSING = "queue_processing"
    EMITTING = "queue_emitting"


class ProcessPhase(str, Enum):
    """Machine states of a Process node."""

    IDLE = "process_idle"
    EMITTING = "process_emitting"


class SinkPhase(str, Enum):
    """Machine states of a Sink node."""

    IDLE = "sink_idle"
    PROCESSING = "sink_processing"


class ModulePhase(str, Enum):
    """Machine states of a Module node.

    Only IDLE is ever entered; the others are declared container states.
    """

    IDLE = "module_idle"
    PROCESSING = "module_processing"
    EMITTING = "module_emitting"
    WAITING = "module_waiting"


class EnhancedFsmPhase(str, Enum):
    """Machine states of an EnhancedFiniteStateMachine node."""

    IDLE = "enhanced_fsm_idle"


class AggregationMethod(str, Enum):
    """Reduction applied by a Queue node to its buffered tokens."""

    SUM = "sum"
    AVERAGE = "average"
    COUNT = "count"
    FIRST = "first"
    LAST = "last"


class TriggerKind(str, Enum):
    """What causes a FiniteStateMachine transition to be evaluated."""

    TOKEN_RECEIVED = "token_received"
    CONDITION = "condition"
    TIMER = "timer"


class ActionKind(str, Enum):
    """Actions run on FiniteStateMachine state entry or exit."""

    EMIT = "emit"
    LOG = "log"
    SET_VARIABLE = "set_variable"
    INCREMENT = "increment"
    DECREMENT = "decrement"


class LineageOperation(str, Enum):
    """How a token came into existence.

    SOURCE tokens are roots with generation level 0. AGGREGATED and
    TRANSFORMED tokens carry the consumed tokens as lineage sources.
    EMITTED tokens are produced by state-machine emit actions.
    """

    SOURCE = "source"
    AGGREGATED = "aggregated"
    TRANSFORMED = "transformed"
    EMITTED = "emitted"


class LedgerAction(str, Enum):
    """Action recorded in an activity ledger entry."""

    TOKEN_EMITTED = "token_emitted"
    TOKEN_RECEIVED = "token_received"
    TOKEN_DROPPED = "token_dropped"
    ACCUMULATING = "accumulating"
    TRIGGER_MET = "trigger_met"
    PROCESSING = "processing"
    EMITTING = "emitting"
    FIRING = "firing"
    CONSUMING = "consuming"
    TOKEN_CONSUMED = "token_consumed"
    TOKENS_PROCESSED = "tokens_processed"
    FSM_TRANSITION = "fsm_transition"
    FSM_LOG = "fsm_log"
    ERROR = "error"
