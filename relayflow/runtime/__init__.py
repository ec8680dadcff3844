"""Runtime orchestration: trigger supervision, firing and action consumption."""

from .action_consumer import ActionConsumer, ExecuteActionFn
from .action_executor import PluginActionExecutor
from .trigger_manager import FireTriggerFn, ManagedTrigger, TriggerRuntimeManager
from .trigger_runner import TriggerRunner

__all__ = [
    "ActionConsumer",
    "ExecuteActionFn",
    "FireTriggerFn",
    "ManagedTrigger",
    "PluginActionExecutor",
    "TriggerRuntimeManager",
    "TriggerRunner",
]
