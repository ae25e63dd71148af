"""Message lifecycle: trash, restore, permanent delete."""

from .orchestrator import LifecycleOrchestrator

__all__ = ["LifecycleOrchestrator"]
