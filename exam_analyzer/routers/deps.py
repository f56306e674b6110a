"""
Shared FastAPI dependencies for the routers.
"""

from typing import Callable, Optional

from exam_analyzer.analysis.orchestrator import AnalysisOrchestrator
from exam_analyzer.config import load_ai_config

OrchestratorBuilder = Callable[[Optional[str]], AnalysisOrchestrator]


def build_orchestrator(provider: Optional[str] = None) -> AnalysisOrchestrator:
    """Orchestrator for one request; `provider` picks the primary."""
    return AnalysisOrchestrator.from_config(load_ai_config(provider))


def get_orchestrator_builder() -> OrchestratorBuilder:
    """Dependency returning the orchestrator factory (overridden in tests)."""
    return build_orchestrator
