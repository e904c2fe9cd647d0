"""Notification router: /api/v1/notifications endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from smartedu.controller import AppController
from smartedu.dependencies import get_controller
from smartedu.notifications.queue import Notification

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


@router.get("", response_model=list[Notification])
async def list_notifications(controller: AppController = Depends(get_controller)) -> list[Notification]:
    """Current toasts, newest first."""
    return controller.notifications.items


@router.delete("/{notification_id}", status_code=204)
async def dismiss_notification(
    notification_id: str,
    controller: AppController = Depends(get_controller),
) -> None:
    if not controller.notifications.remove(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
