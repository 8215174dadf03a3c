"""
Orchestrator Module - Black Box Interface

Purpose: Serve capability requests from the best available provider
Interface: ProviderOrchestrator.execute(), detect_language(), translate(),
           summarize(), analyze_vocabulary(), candidates()
Hidden: Candidate ordering, retry and timeout wiring, availability bookkeeping

Callers see a typed value or an aggregate error, never a provider failure.
"""

from .orchestrator import ProviderOrchestrator

__all__ = ["ProviderOrchestrator"]
