"""API routers for the nexus mastery engine."""

from src.api.routers import student_router

__all__ = [
    "student_router",
]
