"""Route table of canonical controller operations."""

from metacrud.routes.operations import ROUTES, Controller, RouteSpec

__all__ = ["ROUTES", "Controller", "RouteSpec"]
