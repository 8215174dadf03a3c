"""
Timeout Module - Black Box Interface

Purpose: Bound and cancel one in-flight call
Interface: TimeoutGuard.run()
Hidden: Task management, late result disposal
"""

from .timeout import TimeoutGuard

__all__ = ["TimeoutGuard"]
