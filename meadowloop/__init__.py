"""
MeadowLoop - LLM-driven small-town simulation engine.

Characters in a pixel-art town think, move and talk on a recurring tick.
Each tick the engine picks who acts, builds their context, asks a decision
client (an LLM by default) what they do, and applies the result to the world.

All collaborators (store, decision client, digest client, persistence,
settings) are injected by the caller.
"""

__version__ = "0.3.0"

# Engine
from .engine import EngineStatus, SimulationEngine, TickReport

# World state
from .store import WorldStore
from .world_loader import TownLoader, WorldLoadError, default_zones, load_world_store
from .persistence import (
    InMemoryPersistence,
    JsonPersistence,
    PersistenceStrategy,
    apply_world_delta,
    compute_world_delta,
)

# Configuration
from .config import (
    Config,
    ConversationSettings,
    MemorySettings,
    ProbabilitySettings,
    SimulationSettings,
)

# Decision ports and LLM adapters
from .decision import (
    ActionDecisionClient,
    ActionGenerationError,
    ActionRequest,
    DigestError,
    LLMActionDecisionClient,
    LLMMemoryDigestClient,
    MemoryDigestClient,
    ModelHint,
    OverloadedError,
    UsageTracker,
)

# Engine parts
from .actions import ActionExecutor, interpret
from .context import ContextBuilder
from .conversations import ConversationManager
from .memory import MemoryManager
from .probability import ActionSelector, action_probability
from .environment import TownGrid, find_path, get_valid_move_position

# Core schemas
from .schemas import (
    ActionDecision,
    ActionKind,
    BigFive,
    Character,
    CharacterContext,
    CharacterProfile,
    ConsolidationResult,
    Conversation,
    EnvironmentState,
    EventType,
    Injection,
    Memory,
    Message,
    MovementCommand,
    Position,
    Relationship,
    Tile,
    WorldEvent,
    WorldState,
    Zone,
)

__all__ = [
    "ActionDecision",
    "ActionDecisionClient",
    "ActionExecutor",
    "ActionGenerationError",
    "ActionKind",
    "ActionRequest",
    "ActionSelector",
    "BigFive",
    "Character",
    "CharacterContext",
    "CharacterProfile",
    "Config",
    "ConsolidationResult",
    "ContextBuilder",
    "Conversation",
    "ConversationManager",
    "ConversationSettings",
    "DigestError",
    "EngineStatus",
    "EnvironmentState",
    "EventType",
    "InMemoryPersistence",
    "Injection",
    "JsonPersistence",
    "LLMActionDecisionClient",
    "LLMMemoryDigestClient",
    "Memory",
    "MemoryDigestClient",
    "MemoryManager",
    "MemorySettings",
    "Message",
    "ModelHint",
    "MovementCommand",
    "OverloadedError",
    "PersistenceStrategy",
    "Position",
    "ProbabilitySettings",
    "Relationship",
    "SimulationEngine",
    "SimulationSettings",
    "TickReport",
    "Tile",
    "TownGrid",
    "TownLoader",
    "UsageTracker",
    "WorldEvent",
    "WorldLoadError",
    "WorldState",
    "WorldStore",
    "Zone",
    "action_probability",
    "apply_world_delta",
    "compute_world_delta",
    "default_zones",
    "find_path",
    "get_valid_move_position",
    "interpret",
    "load_world_store",
]
