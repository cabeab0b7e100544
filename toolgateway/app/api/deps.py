"""Request-scoped accessors for the application's dispatcher."""

from fastapi import Request

from toolgateway.app.services.dispatcher import Dispatcher


def get_dispatcher(request: Request) -> Dispatcher:
    """Get the dispatcher built during application startup.

    Raises:
        RuntimeError: If the lifespan context is not active.
    """
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise RuntimeError("Dispatcher not initialized. Ensure lifespan context is active.")
    return dispatcher
