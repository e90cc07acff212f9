"""Run packages straight from GitHub repositories through a local checkout cache."""

__version__ = "1.0.0"

from .config import Settings, load_settings
from .models import ExecutionPlan, RepositoryTarget
from .pipeline import PipelineContext, RunPipeline, Stage, run_repository
from .urls import parse_github_url

__all__ = [
    "ExecutionPlan",
    "PipelineContext",
    "RepositoryTarget",
    "RunPipeline",
    "Settings",
    "Stage",
    "load_settings",
    "parse_github_url",
    "run_repository",
    "__version__",
]
