"""Continuously-learning task loop components."""

from .application import Application
from .config import LoopedConfig
from .conversation import ConversationMemory
from .errors import CollaboratorError, ConfigError, LoopedError, StorageFault
from .executor import InstructedExecutor
from .optimizer import OptimizationScheduler, SchedulerConfig, improvement_gate
from .router import IntentRouter
from .state import LearningStateStore
from .types import (
    ConversationContext,
    ConversationTurn,
    InstructionSnapshot,
    Intent,
    IntentClassification,
    Judgment,
    TrainingResult,
)

__all__ = [
    "Application",
    "CollaboratorError",
    "ConfigError",
    "ConversationContext",
    "ConversationMemory",
    "ConversationTurn",
    "InstructedExecutor",
    "InstructionSnapshot",
    "Intent",
    "IntentClassification",
    "IntentRouter",
    "Judgment",
    "LearningStateStore",
    "LoopedConfig",
    "LoopedError",
    "OptimizationScheduler",
    "SchedulerConfig",
    "StorageFault",
    "TrainingResult",
    "improvement_gate",
]
