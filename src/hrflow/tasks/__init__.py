"""Celery tasks for background workflow processing."""

from hrflow.core.celery_app import celery_app

__all__ = ["celery_app"]
