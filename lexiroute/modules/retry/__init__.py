"""
Retry Module - Black Box Interface

Purpose: Decide whether and when to re-attempt a single provider call
Interface: RetryPolicy.classify(), RetryPolicy.run(), RetryPolicy.delay_for()
Hidden: Backoff curve, jitter source, sleep implementation
"""

from .retry import RetryPolicy

__all__ = ["RetryPolicy"]
