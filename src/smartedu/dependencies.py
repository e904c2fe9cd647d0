"""Shared FastAPI dependencies."""

from fastapi import Depends, Request

from smartedu.auth.dependencies import CurrentAccount, get_current_account
from smartedu.controller import AppController
from smartedu.registry import ControllerRegistry


def get_registry(request: Request) -> ControllerRegistry:
    """Return the controller registry created by the app lifespan."""
    registry: ControllerRegistry = request.app.state.registry
    return registry


async def get_controller(
    account: CurrentAccount = Depends(get_current_account),
    registry: ControllerRegistry = Depends(get_registry),
) -> AppController:
    """Return the signed-in account's controller, bootstrapping it on first use."""
    return await registry.get_or_create(account.id, account.access_token)
