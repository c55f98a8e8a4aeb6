"""Middleware chain primitives."""

from .middleware import Handler, Middleware, Request, Stage, compose

__all__ = ["Handler", "Middleware", "Request", "Stage", "compose"]
