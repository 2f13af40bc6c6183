"""
Utility primitives shared by the request pipeline and the subscription service.
"""

from .signals import ResettableSignal

__all__ = [
    "ResettableSignal",
]
