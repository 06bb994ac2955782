# bodega/models.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

# Modelo de producto swappeable (por defecto productos.Producto)
PRODUCT_MODEL = getattr(settings, "BODEGA_PRODUCT_MODEL", "productos.Producto")


# ======================================================================================
# Núcleo de Inventario
# ======================================================================================

class Warehouse(models.Model):
    """
    Bodega física/lógica.
    """
    name = models.CharField("Nombre", max_length=120)
    code = models.CharField("Código", max_length=30, unique=True)
    address = models.CharField("Dirección", max_length=255, blank=True, default="")
    active = models.BooleanField("Activa", default=True)
    is_default_returns = models.BooleanField(
        "Recibe devoluciones",
        default=False,
        help_text="Bodega por defecto para reingresos de devoluciones físicas.",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Bodega"
        verbose_name_plural = "Bodegas"

    def __str__(self) -> str:
        return f"{self.code} - {self.name}"


class StockItem(models.Model):
    """
    Existencia por (producto, bodega).
      - quantity: unidades disponibles (EN_DEPOSITO).
      - damaged_quantity: unidades dañadas, no disponibles para la venta.
    """
    product = models.ForeignKey(PRODUCT_MODEL, on_delete=models.CASCADE, related_name="stock_items")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.CASCADE, related_name="stock_items")
    quantity = models.IntegerField(default=0)
    damaged_quantity = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["warehouse", "product"], name="uniq_stockitem_warehouse_product"
            )
        ]
        verbose_name = "Stock"
        verbose_name_plural = "Stocks"

    def __str__(self) -> str:
        return f"{self.product_id}@{self.warehouse.code} = {self.quantity} (+{self.damaged_quantity} dañadas)"


class Movement(models.Model):
    """
    Cabecera de movimiento de inventario.

    Un reingreso por devolución es un Movement IN cuyo `reference` es el número
    de la devolución (DEV-000001) y sirve de token de idempotencia.
    """
    TYPE_IN = "IN"
    TYPE_CHOICES = [
        (TYPE_IN, "Ingreso"),
    ]

    date = models.DateTimeField(default=timezone.now)
    type = models.CharField(max_length=12, choices=TYPE_CHOICES)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="inventory_movements",
    )
    note = models.TextField(blank=True, default="")
    reference = models.CharField(max_length=60, blank=True, default="", db_index=True)

    # Idempotencia de aplicación en stock
    applied_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Momento en que el movimiento fue aplicado a stock (idempotencia).",
    )

    class Meta:
        ordering = ["-date", "-id"]
        verbose_name = "Movimiento"
        verbose_name_plural = "Movimientos"

    def __str__(self) -> str:
        return f"#{self.pk or 'new'} {self.type} @ {self.date:%Y-%m-%d %H:%M}"


class MovementLine(models.Model):
    """
    Línea de ingreso: suma en warehouse_to según stock_state.
    """
    STATE_EN_DEPOSITO = "EN_DEPOSITO"
    STATE_DANIADO = "DANIADO"
    STATE_CHOICES = [
        (STATE_EN_DEPOSITO, "En depósito"),
        (STATE_DANIADO, "Dañado"),
    ]

    movement = models.ForeignKey(Movement, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(PRODUCT_MODEL, on_delete=models.PROTECT)

    warehouse_to = models.ForeignKey(
        Warehouse, null=True, blank=True, on_delete=models.PROTECT, related_name="in_lines"
    )

    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    stock_state = models.CharField(
        max_length=12,
        choices=STATE_CHOICES,
        default=STATE_EN_DEPOSITO,
    )
    note = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=["product"], name="bodega_mvline_product_idx"),
        ]
        verbose_name = "Línea de Movimiento"
        verbose_name_plural = "Líneas de Movimiento"

    def __str__(self) -> str:
        return f"Line P:{self.product_id} Q:{self.quantity} ({self.stock_state})"
