from .orchestrator import SyncOrchestrator, SyncPhase, ToggleOutcome, ToggleResult

__all__ = ["SyncOrchestrator", "SyncPhase", "ToggleOutcome", "ToggleResult"]
