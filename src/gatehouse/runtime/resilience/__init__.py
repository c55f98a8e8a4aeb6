"""Resilience primitives for calls to remote dependencies."""

from .breaker import CircuitBreaker, CircuitStats, Permit, State

__all__ = ["CircuitBreaker", "CircuitStats", "Permit", "State"]
