# devoluciones/models.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class Devolucion(models.Model):
    """
    Solicitud de reversión total o parcial de una venta.

    El tipo define el origen obligatorio:
    - PRODUCTO_FISICO / CORRECCION_FACTURA -> factura
    - AJUSTE_PEDIDO -> pedido

    La nota de crédito producida se obtiene con `devolucion.nota_credito`
    (referencia Invoice.devolucion), no con una segunda FK.
    """

    class Tipo(models.TextChoices):
        PRODUCTO_FISICO = "PRODUCTO_FISICO", "Devolución de producto físico"
        CORRECCION_FACTURA = "CORRECCION_FACTURA", "Anulación/corrección de factura"
        AJUSTE_PEDIDO = "AJUSTE_PEDIDO", "Ajuste de pedido pre-factura"

    class Estado(models.TextChoices):
        SOLICITADA = "SOLICITADA", "Solicitada"
        EN_REVISION = "EN_REVISION", "En revisión"
        APROBADA = "APROBADA", "Aprobada"
        EN_PROCESO = "EN_PROCESO", "En proceso"
        COMPLETADA = "COMPLETADA", "Completada"
        RECHAZADA = "RECHAZADA", "Rechazada"
        CANCELADA = "CANCELADA", "Cancelada"

    numero = models.CharField(max_length=20, unique=True, help_text="DEV-000001")
    tipo = models.CharField(max_length=20, choices=Tipo.choices)
    estado = models.CharField(
        max_length=20,
        choices=Estado.choices,
        default=Estado.SOLICITADA,
        db_index=True,
    )

    factura = models.ForeignKey(
        "facturacion.Invoice",
        related_name="devoluciones",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    pedido = models.ForeignKey(
        "pedidos.Pedido",
        related_name="devoluciones",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    cliente = models.ForeignKey(
        "clientes.Cliente",
        related_name="devoluciones",
        on_delete=models.PROTECT,
    )

    solicitado_por = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="devoluciones_solicitadas",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    revisado_por = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="devoluciones_revisadas",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    aprobado_por = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="devoluciones_aprobadas",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    # Totales (derivados de las líneas con services.recalcular_totales)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_descuento = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_iva = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    motivo = models.TextField()
    observaciones = models.TextField(blank=True)
    generar_nota_credito = models.BooleanField(default=False)

    fecha_solicitud = models.DateTimeField(default=timezone.now)
    fecha_aprobacion = models.DateTimeField(null=True, blank=True)
    fecha_completada = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-fecha_solicitud", "-id"]
        verbose_name = "Devolución"
        verbose_name_plural = "Devoluciones"
        indexes = [
            models.Index(fields=["tipo", "estado"], name="dev_tipo_estado_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.numero} ({self.get_tipo_display()}) - {self.estado}"

    @property
    def es_terminal(self) -> bool:
        return self.estado in (
            self.Estado.COMPLETADA,
            self.Estado.RECHAZADA,
            self.Estado.CANCELADA,
        )

    def agregar_observacion(self, texto: str) -> None:
        self.observaciones = f"{self.observaciones}\n{texto}" if self.observaciones else texto


class DetalleDevolucion(models.Model):
    """
    Línea de devolución. Refleja una InvoiceLine y además apunta a la línea
    que revierte (de factura y/o de pedido), al estado físico de la mercadería
    y a la línea de reingreso en bodega.
    """

    class EstadoProducto(models.TextChoices):
        BUENO = "BUENO", "Bueno"
        DANIADO = "DANIADO", "Dañado"
        DEFECTUOSO = "DEFECTUOSO", "Defectuoso"

    devolucion = models.ForeignKey(
        Devolucion,
        related_name="detalles",
        on_delete=models.CASCADE,
    )
    producto = models.ForeignKey(
        "productos.Producto",
        related_name="detalles_devolucion",
        on_delete=models.PROTECT,
    )
    invoice_line = models.ForeignKey(
        "facturacion.InvoiceLine",
        related_name="detalles_devolucion",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    detalle_pedido = models.ForeignKey(
        "pedidos.DetallePedido",
        related_name="detalles_devolucion",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )

    cantidad = models.PositiveIntegerField()
    precio_unitario = models.DecimalField(max_digits=14, decimal_places=2)
    descuento = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tasa_iva = models.PositiveSmallIntegerField(default=10)

    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    iva = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    estado_producto = models.CharField(
        max_length=12,
        choices=EstadoProducto.choices,
        default=EstadoProducto.BUENO,
    )
    observaciones = models.CharField(max_length=255, blank=True)

    # Reingreso físico (solo PRODUCTO_FISICO)
    movement_line = models.ForeignKey(
        "bodega.MovementLine",
        related_name="detalles_devolucion",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    class Meta:
        ordering = ["id"]
        verbose_name = "Detalle de devolución"
        verbose_name_plural = "Detalles de devolución"

    def __str__(self) -> str:
        return f"{self.producto_id} x {self.cantidad} ({self.estado_producto})"
