# bodega/apps.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging

from django.apps import AppConfig
from django.db.models.signals import post_migrate

logger = logging.getLogger(__name__)


def _connect_signals(cfg: "BodegaConfig") -> None:
    """
    Conecta señales evitando importar modelos en import-time.
    La función conectada es idempotente y sólo actúa cuando el sender es esta app.
    """

    def ensure_returns_warehouse(sender, **kwargs) -> None:
        """
        Post-migrate: garantiza que exista una bodega para reingresos de devoluciones.
        """
        if getattr(sender, "label", "") != cfg.label:
            return

        from django.apps import apps as django_apps

        Warehouse = django_apps.get_model("bodega", "Warehouse")
        _, created = Warehouse.objects.get_or_create(
            code="DEV",
            defaults={"name": "Devoluciones", "is_default_returns": True},
        )
        if created:
            logger.info("bodega: bodega de devoluciones creada (code=DEV).")

    post_migrate.connect(
        ensure_returns_warehouse,
        sender=cfg,
        dispatch_uid="bodega_post_migrate_returns_warehouse",
        weak=False,
    )


class BodegaConfig(AppConfig):
    """
    App de Bodega/Inventario: saldos y reingresos por devoluciones.
    """
    default_auto_field = "django.db.models.BigAutoField"
    name = "bodega"
    label = "bodega"
    verbose_name = "Bodega / Inventario"

    def ready(self) -> None:  # type: ignore[override]
        _connect_signals(self)
