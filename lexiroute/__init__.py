"""
Lexiroute - Capability Provider Orchestration

Runs language capabilities (language detection, translation, summarization,
vocabulary analysis) against a ranked set of interchangeable providers and
returns a usable result even when individual providers fail.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- api: Shared data models
- errors: Error taxonomy and reporting
- retry: Retry classification and backoff
- timeout: Deadline enforcement and cancellation
- availability: Provider availability memo
- relay: Cross-context dispatch
- providers: Provider implementations
- orchestrator: Fallback execution
- offline: Derived offline/capability view
- config: Configuration contract
"""

__version__ = "1.0.0"
