# core/__init__.py
from __future__ import annotations

# La app Celery se carga con Django para que @shared_task la use
from core.celery import app as celery_app

__all__ = ("celery_app",)
