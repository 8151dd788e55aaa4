"""tickflow: polling workflow orchestration over a shared job store."""

from .config import TickflowConfig, load_config
from .contracts import Job, JobStatus, TickSummary, Transformer, WorkflowDefinition
from .execute import StepExecutor
from .executors import get_executor_backend
from .orchestrator import Orchestrator
from .persistence import get_store
from .resolve import StepResolver

__version__ = "0.1.0"
__all__ = [
    "Job",
    "JobStatus",
    "Orchestrator",
    "StepExecutor",
    "StepResolver",
    "TickSummary",
    "TickflowConfig",
    "Transformer",
    "WorkflowDefinition",
    "get_executor_backend",
    "get_store",
    "load_config",
]
