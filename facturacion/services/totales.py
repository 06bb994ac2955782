# facturacion/services/totales.py
# -*- coding: utf-8 -*-
"""
Cálculo explícito de totales de documentos electrónicos.

Reglas por línea:
    subtotal = cantidad * precio_unitario
    iva      = (subtotal - descuento) * tasa / 100     (ROUND_HALF_UP, 2 decimales)
    total    = subtotal - descuento + iva

Cabecera (siempre derivada de las líneas):
    subtotal        = Σ línea.subtotal
    total_iva5/10   = Σ línea.iva por tasa
    total_iva       = Σ línea.iva
    total_descuento = Σ línea.descuento
    total           = subtotal + total_iva - total_descuento
"""
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable

from django.db import transaction
from django.utils import timezone

from facturacion.exceptions import InvalidStateError, WorkflowError
from facturacion.models import Invoice, InvoiceLine

logger = logging.getLogger("facturacion.sifen")

CENT = Decimal("0.01")
TASAS_VALIDAS = (0, 5, 10)

# Campos de cabecera que se derivan de las líneas
CAMPOS_TOTALES = (
    "subtotal",
    "total_iva5",
    "total_iva10",
    "total_iva",
    "total_descuento",
    "total",
)


def redondear(valor: Decimal | int | str) -> Decimal:
    return Decimal(str(valor)).quantize(CENT, rounding=ROUND_HALF_UP)


def calcular_linea(linea: Any) -> Any:
    """
    Recalcula subtotal/iva/total de una línea (InvoiceLine o DetalleDevolucion).
    No persiste.
    """
    cantidad = Decimal(str(linea.cantidad or 0))
    precio = Decimal(str(linea.precio_unitario or 0))
    descuento = redondear(linea.descuento or 0)
    tasa = int(linea.tasa_iva or 0)

    if cantidad <= 0:
        raise WorkflowError("La cantidad de la línea debe ser positiva.")
    if precio < 0:
        raise WorkflowError("El precio unitario no puede ser negativo.")
    if tasa not in TASAS_VALIDAS:
        raise WorkflowError(f"Tasa de IVA inválida: {tasa} (permitidas 0, 5, 10).")

    subtotal = redondear(cantidad * precio)
    if descuento < 0 or descuento > subtotal:
        raise WorkflowError("El descuento debe estar entre 0 y el subtotal de la línea.")

    base = subtotal - descuento
    iva = redondear(base * tasa / Decimal("100"))

    linea.descuento = descuento
    linea.subtotal = subtotal
    linea.iva = iva
    linea.total = base + iva
    return linea


def sumar_lineas(lineas: Iterable[Any]) -> Dict[str, Decimal]:
    """
    Totales de cabecera a partir de líneas ya calculadas.
    """
    totales = {campo: Decimal("0.00") for campo in CAMPOS_TOTALES}
    for linea in lineas:
        totales["subtotal"] += linea.subtotal
        totales["total_descuento"] += linea.descuento
        totales["total_iva"] += linea.iva
        if int(linea.tasa_iva) == 5:
            totales["total_iva5"] += linea.iva
        elif int(linea.tasa_iva) == 10:
            totales["total_iva10"] += linea.iva
    totales["total"] = (
        totales["subtotal"] + totales["total_iva"] - totales["total_descuento"]
    )
    return totales


def asegurar_editable(invoice: Invoice) -> None:
    """
    Un documento ya enviado, aprobado o anulado no admite cambios de contenido.
    """
    if invoice.estado not in (Invoice.Estado.BORRADOR, Invoice.Estado.GENERADA):
        raise InvalidStateError(
            f"El documento {invoice.pk} está en estado {invoice.estado} y no puede modificarse.",
            estado=invoice.estado,
        )


@transaction.atomic
def recalcular_totales(invoice: Invoice) -> Invoice:
    """
    Recalcula y persiste líneas y totales de cabecera de un documento editable.
    El saldo inicial es igual al total (aún sin pagos).
    """
    asegurar_editable(invoice)

    lineas = list(invoice.lines.all())
    for linea in lineas:
        calcular_linea(linea)
    if lineas:
        InvoiceLine.objects.bulk_update(lineas, ["descuento", "subtotal", "iva", "total"])

    for campo, valor in sumar_lineas(lineas).items():
        setattr(invoice, campo, valor)
    invoice.saldo = invoice.total - invoice.monto_pagado
    invoice.updated_at = timezone.now()
    invoice.save(update_fields=list(CAMPOS_TOTALES) + ["saldo", "updated_at"])

    logger.debug(
        "Totales recalculados documento %s: subtotal=%s iva=%s desc=%s total=%s",
        invoice.pk,
        invoice.subtotal,
        invoice.total_iva,
        invoice.total_descuento,
        invoice.total,
    )
    return invoice


@transaction.atomic
def agregar_linea(invoice: Invoice, **datos) -> InvoiceLine:
    """
    Agrega una línea a un documento editable y recalcula totales.
    """
    asegurar_editable(invoice)
    linea = InvoiceLine(invoice=invoice, **datos)
    calcular_linea(linea)
    linea.save()
    recalcular_totales(invoice)
    return linea

