"""Core configuration and utilities for the sample sync backend."""

from samplesync.core.cache import Cache
from samplesync.core.config import Settings, get_settings, settings
from samplesync.core.resilience import CircuitBreaker, CircuitBreakerOpen, get_all_circuit_breakers

__all__ = [
    "Cache",
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "Settings",
    "get_all_circuit_breakers",
    "get_settings",
    "settings",
]
