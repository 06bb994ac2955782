# pedidos/models.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone


class PedidoError(Exception):
    """Violaciones de reglas sobre cantidades de un pedido (facturado/pendiente)."""


class Pedido(models.Model):
    """
    Pedido de un cliente. Origen de facturas (conversión) y de ajustes de cantidad.
    """

    class Estado(models.TextChoices):
        PENDIENTE = "PENDIENTE", "Pendiente"
        EN_PROCESO = "EN_PROCESO", "En proceso"
        FACTURADO = "FACTURADO", "Facturado"
        CANCELADO = "CANCELADO", "Cancelado"

    cliente = models.ForeignKey(
        "clientes.Cliente",
        related_name="pedidos",
        on_delete=models.PROTECT,
    )
    codigo_tracking = models.CharField(max_length=40, unique=True)
    estado = models.CharField(
        max_length=20,
        choices=Estado.choices,
        default=Estado.PENDIENTE,
        db_index=True,
    )
    observaciones = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Pedido"
        verbose_name_plural = "Pedidos"

    def __str__(self) -> str:
        return f"Pedido {self.codigo_tracking}"

    @property
    def detalles_activos(self):
        return self.detalles.filter(is_active=True)

    @property
    def total(self) -> Decimal:
        return sum((d.sub_total for d in self.detalles_activos), Decimal("0.00"))


class DetallePedido(models.Model):
    """
    Línea de pedido con contador de unidades ya facturadas.

    cantidad_pendiente = cantidad - cantidad_facturada; los ajustes de pedido
    nunca pueden reducir más unidades que las pendientes de facturar.
    """

    pedido = models.ForeignKey(
        Pedido,
        related_name="detalles",
        on_delete=models.CASCADE,
    )
    producto = models.ForeignKey(
        "productos.Producto",
        related_name="detalles_pedido",
        on_delete=models.PROTECT,
    )
    cantidad = models.PositiveIntegerField()
    precio_unitario = models.DecimalField(max_digits=14, decimal_places=2)
    sub_total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    cantidad_facturada = models.PositiveIntegerField(default=0)

    # Soft delete
    is_active = models.BooleanField(default=True)
    deletion_reason = models.CharField(max_length=255, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Detalle de pedido"
        verbose_name_plural = "Detalles de pedido"

    def __str__(self) -> str:
        return f"{self.producto_id} x {self.cantidad} (facturado {self.cantidad_facturada})"

    @property
    def cantidad_pendiente(self) -> int:
        return self.cantidad - self.cantidad_facturada

    def recalcular_sub_total(self) -> None:
        self.sub_total = (self.precio_unitario * self.cantidad).quantize(Decimal("0.01"))

    def facturar(self, cantidad: int) -> None:
        """
        Incrementa el contador de unidades facturadas (no persiste).
        """
        if cantidad <= 0:
            raise PedidoError("La cantidad a facturar debe ser positiva.")
        if cantidad > self.cantidad_pendiente:
            raise PedidoError(
                f"No se pueden facturar {cantidad} unidades; "
                f"solo hay {self.cantidad_pendiente} pendientes."
            )
        self.cantidad_facturada += cantidad

    def revertir_facturacion(self, cantidad: int) -> None:
        """
        Decrementa el contador de unidades facturadas (no persiste).
        """
        if cantidad <= 0:
            raise PedidoError("La cantidad a revertir debe ser positiva.")
        if cantidad > self.cantidad_facturada:
            raise PedidoError(
                f"No se pueden revertir {cantidad} unidades; "
                f"solo hay {self.cantidad_facturada} facturadas."
            )
        self.cantidad_facturada -= cantidad

    def reducir_cantidad(self, cantidad: int, motivo: str = "") -> None:
        """
        Reduce la cantidad pedida. Nunca por encima de lo pendiente de facturar.
        A cero se desactiva la línea (soft delete).
        """
        if cantidad <= 0:
            raise PedidoError("La cantidad a reducir debe ser positiva.")
        if cantidad > self.cantidad_pendiente:
            raise PedidoError(
                f"No se puede devolver {cantidad} unidades. "
                f"Solo hay {self.cantidad_pendiente} pendientes de facturar."
            )
        self.cantidad -= cantidad
        if self.cantidad == 0:
            self.is_active = False
            self.deletion_reason = motivo
            self.deleted_at = timezone.now()
        self.recalcular_sub_total()
