# bodega/services.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from typing import Iterable, Optional

from django.contrib.auth.models import AbstractBaseUser
from django.db import transaction
from django.utils import timezone

from .models import Movement, MovementLine, StockItem, Warehouse

logger = logging.getLogger(__name__)


class MovementApplyError(Exception):
    """Errores al aplicar un movimiento sobre los saldos de stock."""


# ======================================================================================
# Utilidades internas
# ======================================================================================

def _ensure_stock_item(product_id: int | str, warehouse: Warehouse) -> StockItem:
    """Obtiene o crea el StockItem (producto, bodega) con lock de fila."""
    obj, _ = StockItem.objects.select_for_update().get_or_create(
        product_id=product_id,
        warehouse_id=warehouse.id,
        defaults={"quantity": 0, "damaged_quantity": 0},
    )
    return obj


def default_returns_warehouse() -> Optional[Warehouse]:
    """
    Bodega destino de reingresos: la marcada `is_default_returns`, o la primera activa.
    """
    wh = Warehouse.objects.filter(active=True, is_default_returns=True).order_by("id").first()
    if wh is None:
        wh = Warehouse.objects.filter(active=True).order_by("id").first()
    return wh


# ======================================================================================
# API pública
# ======================================================================================

@transaction.atomic
def crear_ingreso(
    *,
    reference: str,
    lines: Iterable[dict],
    warehouse: Warehouse,
    user: Optional[AbstractBaseUser] = None,
    note: str = "",
) -> Movement:
    """
    Crea (y aplica) un Movement IN. Cada item de `lines` es un dict con
    product_id, quantity, stock_state y note opcional.

    Idempotencia: si ya existe un Movement IN con el mismo `reference`, se retorna ese.
    """
    existing = (
        Movement.objects.select_for_update()
        .filter(type=Movement.TYPE_IN, reference=reference)
        .first()
    )
    if existing is not None:
        logger.info("crear_ingreso: movimiento %s ya existe para %s", existing.pk, reference)
        return existing

    mv = Movement.objects.create(
        type=Movement.TYPE_IN,
        user=user,
        note=note,
        reference=reference,
    )
    MovementLine.objects.bulk_create(
        [
            MovementLine(
                movement=mv,
                product_id=spec["product_id"],
                warehouse_to=warehouse,
                quantity=spec["quantity"],
                stock_state=spec.get("stock_state") or MovementLine.STATE_EN_DEPOSITO,
                note=spec.get("note", ""),
            )
            for spec in lines
        ]
    )
    return apply_movement(mv)


@transaction.atomic
def apply_movement(movement: Movement) -> Movement:
    """
    Aplica un Movement a los saldos de StockItem.

    Idempotencia:
    - Si el movimiento ya tiene `applied_at` seteado, retorna sin volver a aplicar.

    Cada línea suma en warehouse_to: quantity si EN_DEPOSITO, damaged_quantity si DANIADO.
    """
    mv = Movement.objects.select_for_update().get(pk=movement.pk)
    if mv.applied_at:
        return mv  # idempotente

    lines = list(mv.lines.select_related("warehouse_to"))
    if not lines:
        raise MovementApplyError("El movimiento no contiene líneas.")

    for line in lines:
        _apply_single_line(mv, line)

    mv.applied_at = timezone.now()
    mv.save(update_fields=["applied_at"])
    logger.info("Movement %s (%s) aplicado con %s líneas", mv.pk, mv.type, len(lines))
    return mv


def _apply_single_line(mv: Movement, line: MovementLine) -> None:
    """
    Aplica una línea de ingreso sobre el stock de la bodega destino.
    """
    if mv.type != Movement.TYPE_IN:
        raise MovementApplyError(f"Tipo de movimiento desconocido: {mv.type!r}.")
    if line.quantity is None or line.quantity <= 0:
        raise MovementApplyError("Quantity debe ser un entero positivo.")
    if not line.warehouse_to:
        raise MovementApplyError("Movimiento de tipo IN requiere 'warehouse_to'.")

    stock = _ensure_stock_item(line.product_id, line.warehouse_to)
    if line.stock_state == MovementLine.STATE_DANIADO:
        stock.damaged_quantity += line.quantity
        stock.save(update_fields=["damaged_quantity"])
    else:
        stock.quantity += line.quantity
        stock.save(update_fields=["quantity"])
