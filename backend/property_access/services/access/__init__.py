"""Access-controlled property operations"""
from .caller import Caller, CallerKind
from .engine import PropertyAccessService
from .read import ReadAccessEvaluator
from .write import PluginInstalledPredicate, WriteAccessEvaluator
from .batch import BatchCoordinator

__all__ = [
    "Caller",
    "CallerKind",
    "PropertyAccessService",
    "ReadAccessEvaluator",
    "WriteAccessEvaluator",
    "PluginInstalledPredicate",
    "BatchCoordinator",
]
