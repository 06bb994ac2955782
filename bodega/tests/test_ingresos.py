# bodega/tests/test_ingresos.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.contrib.auth import get_user_model
from django.test import TestCase

from bodega.models import Movement, MovementLine, StockItem
from bodega.services import MovementApplyError, apply_movement, crear_ingreso, default_returns_warehouse
from productos.models import Producto

User = get_user_model()


class IngresoTests(TestCase):
    def setUp(self) -> None:
        self.user = User.objects.create_user(username="bodega", password="x")
        self.producto = Producto.objects.create(codigo="P-001", descripcion="Producto Test", precio="10.00")
        self.bodega = default_returns_warehouse()

    def test_bodega_de_devoluciones_por_defecto(self):
        self.assertIsNotNone(self.bodega)
        self.assertEqual(self.bodega.code, "DEV")
        self.assertTrue(self.bodega.is_default_returns)

    def test_ingreso_suma_por_estado(self):
        mv = crear_ingreso(
            reference="DEV-000001",
            warehouse=self.bodega,
            user=self.user,
            lines=[
                {"product_id": self.producto.pk, "quantity": 4},
                {"product_id": self.producto.pk, "quantity": 1, "stock_state": MovementLine.STATE_DANIADO},
            ],
        )

        self.assertEqual(mv.type, Movement.TYPE_IN)
        self.assertIsNotNone(mv.applied_at)
        stock = StockItem.objects.get(product=self.producto, warehouse=self.bodega)
        self.assertEqual(stock.quantity, 4)
        self.assertEqual(stock.damaged_quantity, 1)

    def test_ingreso_idempotente_por_referencia(self):
        lines = [{"product_id": self.producto.pk, "quantity": 2}]
        primero = crear_ingreso(reference="DEV-000002", warehouse=self.bodega, lines=lines)
        segundo = crear_ingreso(reference="DEV-000002", warehouse=self.bodega, lines=lines)

        self.assertEqual(primero.pk, segundo.pk)
        apply_movement(primero)
        stock = StockItem.objects.get(product=self.producto, warehouse=self.bodega)
        self.assertEqual(stock.quantity, 2)

    def test_movimiento_sin_lineas(self):
        mv = Movement.objects.create(type=Movement.TYPE_IN, reference="VACIO")
        with self.assertRaises(MovementApplyError):
            apply_movement(mv)

    def test_ingreso_sin_bodega_destino(self):
        mv = Movement.objects.create(type=Movement.TYPE_IN, reference="SIN-BODEGA")
        MovementLine.objects.create(movement=mv, product=self.producto, quantity=1)
        with self.assertRaises(MovementApplyError):
            apply_movement(mv)
        self.assertFalse(StockItem.objects.filter(product=self.producto).exists())
