"""
Testing utilities for FastAPI dependency overrides and background submissions.
"""
from contextlib import asynccontextmanager
from typing import Any, Callable, List


def create_return_value_override(return_value: Any) -> Callable:
    """
    Create a dependency override function that returns a specific value.

    A MagicMock (or any callable taking *args, **kwargs) must not be used as the
    override directly: FastAPI would read its signature and expect query
    parameters named 'args' and 'kwargs'.

    Args:
        return_value: The value to return when the dependency is called

    Returns:
        A callable that can be used as a dependency override
    """
    def override_func() -> Any:
        """Returns the specified value."""
        return return_value

    return override_func


def create_session_factory_override(session: Any) -> Callable:
    """
    Create a replacement for signless.db.database.get_db that yields the given session.

    Used by SubmissionService in tests so background submissions never open a real
    database connection.
    """
    @asynccontextmanager
    async def session_factory():
        yield session

    return session_factory


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records requested delays and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
