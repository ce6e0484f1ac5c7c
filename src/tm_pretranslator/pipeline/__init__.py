"""Document pretranslation pipeline."""

from tm_pretranslator.pipeline.pretranslate import OrchestratorState, PretranslationOrchestrator

__all__ = ["PretranslationOrchestrator", "OrchestratorState"]
