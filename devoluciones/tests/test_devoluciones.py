# devoluciones/tests/test_devoluciones.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from bodega.models import Movement, StockItem, Warehouse
from devoluciones.models import DetalleDevolucion, Devolucion
from devoluciones.services import (
    ReturnError,
    aprobar_devolucion,
    cancelar_devolucion,
    crear_devolucion,
    generar_nota_credito,
    rechazar_devolucion,
    recalcular_totales,
    revisar_devolucion,
    totales_vigentes,
)
from facturacion.models import Invoice
from facturacion.services.sifen.workflow import crear_factura_desde_pedido, generar_documento
from facturacion.tests.helpers import (
    crear_cliente,
    crear_entidades,
    crear_pedido,
    crear_producto,
    forzar_estado,
)
from pedidos.models import DetallePedido, Pedido


class BaseDevolucionTests(TestCase):
    """
    Pedido de 5 x A (100, IVA 10%) y 2 x S (servicio 50, IVA 10%),
    facturado completo y aprobado.
    """

    def setUp(self) -> None:
        self.empresa, _, self.punto = crear_entidades()
        self.cliente = crear_cliente()
        self.producto = crear_producto("A-1", "100.00", 10)
        self.servicio = crear_producto("S-1", "50.00", 10, es_servicio=True)
        self.bodega = Warehouse.objects.get(code="DEV")

    def _factura_aprobada(self, items=None) -> Invoice:
        pedido = crear_pedido(self.cliente, items or [(self.producto, 5)])
        factura = crear_factura_desde_pedido(pedido, self.punto)
        generar_documento(factura)
        factura.refresh_from_db()
        return forzar_estado(factura, Invoice.Estado.APROBADA)

    def _linea(self, factura: Invoice, producto=None):
        return factura.lines.get(producto=producto or self.producto)

    def _stock(self) -> StockItem:
        return StockItem.objects.get(warehouse=self.bodega, product=self.producto)


class ProductoFisicoTests(BaseDevolucionTests):
    def test_reingreso_y_reversion_de_facturado(self):
        factura = self._factura_aprobada()
        linea = self._linea(factura)

        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[{"invoice_line": linea, "cantidad": 3}],
            motivo="Cliente devuelve mercadería",
        )
        self.assertEqual(devolucion.estado, Devolucion.Estado.SOLICITADA)
        self.assertTrue(devolucion.numero.startswith("DEV-"))
        self.assertEqual(devolucion.total, Decimal("330.00"))

        aprobar_devolucion(devolucion)

        self.assertEqual(devolucion.estado, Devolucion.Estado.COMPLETADA)
        self.assertIsNotNone(devolucion.fecha_completada)

        movimiento = Movement.objects.get(reference=devolucion.numero)
        self.assertEqual(movimiento.type, Movement.TYPE_IN)
        self.assertIsNotNone(movimiento.applied_at)
        self.assertEqual(self._stock().quantity, 3)

        detalle_pedido = DetallePedido.objects.get(pk=linea.detalle_pedido_id)
        self.assertEqual(detalle_pedido.cantidad_facturada, 2)

        detalle = devolucion.detalles.get()
        self.assertIsNotNone(detalle.movement_line_id)
        self.assertFalse(Invoice.objects.filter(devolucion=devolucion).exists())

    def test_mercaderia_daniada_va_a_saldo_daniado(self):
        factura = self._factura_aprobada()
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[
                {
                    "invoice_line": self._linea(factura),
                    "cantidad": 1,
                    "estado_producto": DetalleDevolucion.EstadoProducto.DANIADO,
                }
            ],
            motivo="Llegó roto",
        )

        aprobar_devolucion(devolucion)

        stock = self._stock()
        self.assertEqual(stock.quantity, 0)
        self.assertEqual(stock.damaged_quantity, 1)

    def test_servicio_no_genera_reingreso(self):
        factura = self._factura_aprobada([(self.servicio, 2)])
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[{"invoice_line": self._linea(factura, self.servicio), "cantidad": 1}],
            motivo="Servicio no prestado",
        )

        aprobar_devolucion(devolucion)

        self.assertEqual(devolucion.estado, Devolucion.Estado.COMPLETADA)
        self.assertFalse(Movement.objects.filter(reference=devolucion.numero).exists())

    def test_no_se_devuelve_mas_de_lo_facturado(self):
        factura = self._factura_aprobada()
        with self.assertRaises(ReturnError):
            crear_devolucion(
                tipo=Devolucion.Tipo.PRODUCTO_FISICO,
                factura=factura,
                lineas=[{"invoice_line": self._linea(factura), "cantidad": 6}],
                motivo="Exceso",
            )
        self.assertFalse(Devolucion.objects.exists())

    def test_factura_anulada(self):
        factura = forzar_estado(self._factura_aprobada(), Invoice.Estado.ANULADA)
        with self.assertRaises(ReturnError):
            crear_devolucion(
                tipo=Devolucion.Tipo.PRODUCTO_FISICO,
                factura=factura,
                lineas=[{"invoice_line": self._linea(factura), "cantidad": 1}],
                motivo="x",
            )


class NotaCreditoTests(BaseDevolucionTests):
    def test_nota_credito_por_devolucion_fisica(self):
        factura = self._factura_aprobada()
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[{"invoice_line": self._linea(factura), "cantidad": 2}],
            motivo="Devolución parcial",
            generar_nota_credito=True,
        )

        aprobar_devolucion(devolucion)

        nota = Invoice.objects.get(devolucion=devolucion)
        self.assertEqual(nota.tipo_documento, Invoice.TipoDocumento.NOTA_CREDITO)
        self.assertEqual(nota.estado, Invoice.Estado.BORRADOR)
        self.assertEqual(nota.factura_original, factura)
        self.assertEqual(nota.motivo_emision, 2)
        self.assertEqual(nota.total, Decimal("220.00"))
        self.assertEqual(nota.ruc_receptor, factura.ruc_receptor)
        self.assertEqual(nota.lines.get().cantidad, Decimal("2"))

    def test_correccion_parcial_usa_motivo_de_correccion(self):
        factura = self._factura_aprobada()
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.CORRECCION_FACTURA,
            factura=factura,
            lineas=[{"invoice_line": self._linea(factura), "cantidad": 1}],
            motivo="Precio mal cargado",
            generar_nota_credito=True,
        )

        aprobar_devolucion(devolucion)

        nota = Invoice.objects.get(devolucion=devolucion)
        self.assertEqual(nota.motivo_emision, 1)
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Invoice.Estado.APROBADA)

    def test_acumulado_de_notas_no_supera_la_factura(self):
        factura = self._factura_aprobada()
        linea = self._linea(factura)

        primera = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[{"invoice_line": linea, "cantidad": 4}],
            motivo="Primera",
            generar_nota_credito=True,
        )
        aprobar_devolucion(primera)

        segunda = crear_devolucion(
            tipo=Devolucion.Tipo.CORRECCION_FACTURA,
            factura=factura,
            lineas=[{"invoice_line": linea, "cantidad": 1, "precio_unitario": Decimal("200.00")}],
            motivo="Segunda",
            generar_nota_credito=True,
        )
        with self.assertRaises(ReturnError) as ctx:
            aprobar_devolucion(segunda)
        self.assertIn("supera", str(ctx.exception))

        self.assertEqual(segunda.estado, Devolucion.Estado.SOLICITADA)
        self.assertEqual(factura.notas_credito.count(), 1)

    def test_nota_credito_con_emision_en_background(self):
        factura = self._factura_aprobada()
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[{"invoice_line": self._linea(factura), "cantidad": 1}],
            motivo="Emitir",
            generar_nota_credito=True,
        )

        with patch("devoluciones.services.emitir_factura_task.delay") as delay:
            with self.captureOnCommitCallbacks(execute=True):
                aprobar_devolucion(devolucion, emitir=True)

        nota = Invoice.objects.get(devolucion=devolucion)
        delay.assert_called_once_with(nota.pk)

    def test_una_sola_nota_por_devolucion(self):
        factura = self._factura_aprobada()
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.PRODUCTO_FISICO,
            factura=factura,
            lineas=[{"invoice_line": self._linea(factura), "cantidad": 1}],
            motivo="Una",
            generar_nota_credito=True,
        )
        aprobar_devolucion(devolucion)

        with self.assertRaises(ReturnError):
            generar_nota_credito(devolucion)

    def test_factura_sin_cdc(self):
        pedido = crear_pedido(self.cliente, [(self.producto, 1)])
        factura = crear_factura_desde_pedido(pedido, self.punto)
        with self.assertRaises(ReturnError):
            crear_devolucion(
                tipo=Devolucion.Tipo.PRODUCTO_FISICO,
                factura=factura,
                lineas=[{"invoice_line": self._linea(factura), "cantidad": 1}],
                motivo="Sin CDC",
                generar_nota_credito=True,
            )


class CorreccionFacturaTests(BaseDevolucionTests):
    def test_correccion_total_anula_la_factura(self):
        factura = self._factura_aprobada()
        linea = self._linea(factura)
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.CORRECCION_FACTURA,
            factura=factura,
            lineas=[{"invoice_line": linea, "cantidad": 5}],
            motivo="Factura emitida al cliente equivocado",
        )

        aprobar_devolucion(devolucion)

        factura.refresh_from_db()
        self.assertEqual(factura.estado, Invoice.Estado.ANULADA)
        self.assertTrue(factura.requiere_cancelacion_sifen)
        self.assertIn(devolucion.numero, factura.motivo_anulacion)
        self.assertEqual(DetallePedido.objects.get(pk=linea.detalle_pedido_id).cantidad_facturada, 0)
        self.assertFalse(Movement.objects.filter(reference=devolucion.numero).exists())

    def test_correccion_sobre_factura_pagada_revierte_todo(self):
        factura = forzar_estado(self._factura_aprobada(), Invoice.Estado.PAGADA)
        linea = self._linea(factura)
        devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.CORRECCION_FACTURA,
            factura=factura,
            lineas=[{"invoice_line": linea, "cantidad": 5}],
            motivo="Corrección",
        )

        with self.assertRaises(ReturnError):
            aprobar_devolucion(devolucion)

        self.assertEqual(devolucion.estado, Devolucion.Estado.SOLICITADA)
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Invoice.Estado.PAGADA)


class AjustePedidoTests(BaseDevolucionTests):
    def setUp(self) -> None:
        super().setUp()
        self.pedido = crear_pedido(self.cliente, [(self.producto, 5)])
        self.detalle = self.pedido.detalles.get()

    def _ajuste(self, cantidad: int) -> Devolucion:
        return crear_devolucion(
            tipo=Devolucion.Tipo.AJUSTE_PEDIDO,
            pedido=self.pedido,
            lineas=[{"detalle_pedido": self.detalle, "cantidad": cantidad}],
            motivo="Cliente reduce el pedido",
        )

    def test_ajuste_parcial(self):
        devolucion = self._ajuste(2)

        aprobar_devolucion(devolucion)

        self.detalle.refresh_from_db()
        self.assertEqual(self.detalle.cantidad, 3)
        self.assertEqual(self.detalle.sub_total, Decimal("300.00"))
        self.assertTrue(self.detalle.is_active)
        self.pedido.refresh_from_db()
        self.assertNotEqual(self.pedido.estado, Pedido.Estado.CANCELADO)
        self.assertFalse(Movement.objects.filter(reference=devolucion.numero).exists())

    def test_ajuste_total_cancela_el_pedido(self):
        aprobar_devolucion(self._ajuste(5))

        self.detalle.refresh_from_db()
        self.assertFalse(self.detalle.is_active)
        self.assertIsNotNone(self.detalle.deleted_at)
        self.pedido.refresh_from_db()
        self.assertEqual(self.pedido.estado, Pedido.Estado.CANCELADO)

    def test_ajuste_mayor_a_lo_pendiente(self):
        DetallePedido.objects.filter(pk=self.detalle.pk).update(cantidad_facturada=3)
        self.detalle.refresh_from_db()

        with self.assertRaises(ReturnError) as ctx:
            self._ajuste(3)
        self.assertIn("Solo hay 2 pendientes", str(ctx.exception))

    def test_pendiente_se_revalida_al_aprobar(self):
        devolucion = self._ajuste(3)
        # Facturación parcial posterior a la solicitud
        DetallePedido.objects.filter(pk=self.detalle.pk).update(cantidad_facturada=4)

        with self.assertRaises(ReturnError):
            aprobar_devolucion(devolucion)

        self.assertEqual(devolucion.estado, Devolucion.Estado.SOLICITADA)
        self.detalle.refresh_from_db()
        self.assertEqual(self.detalle.cantidad, 5)
        self.assertTrue(self.detalle.is_active)

    def test_ajuste_sin_nota_de_credito(self):
        with self.assertRaises(ReturnError):
            crear_devolucion(
                tipo=Devolucion.Tipo.AJUSTE_PEDIDO,
                pedido=self.pedido,
                lineas=[{"detalle_pedido": self.detalle, "cantidad": 1}],
                motivo="x",
                generar_nota_credito=True,
            )


class EstadosDevolucionTests(BaseDevolucionTests):
    def setUp(self) -> None:
        super().setUp()
        self.pedido = crear_pedido(self.cliente, [(self.producto, 5)])
        self.devolucion = crear_devolucion(
            tipo=Devolucion.Tipo.AJUSTE_PEDIDO,
            pedido=self.pedido,
            lineas=[{"detalle_pedido": self.pedido.detalles.get(), "cantidad": 1}],
            motivo="Ajuste",
        )

    def test_revision_y_rechazo(self):
        revisar_devolucion(self.devolucion)
        self.assertEqual(self.devolucion.estado, Devolucion.Estado.EN_REVISION)

        rechazar_devolucion(self.devolucion, "Fuera de plazo")

        self.devolucion.refresh_from_db()
        self.assertEqual(self.devolucion.estado, Devolucion.Estado.RECHAZADA)
        self.assertIn("Fuera de plazo", self.devolucion.observaciones)

        with self.assertRaises(ReturnError):
            aprobar_devolucion(self.devolucion)
        self.assertEqual(self.devolucion.estado, Devolucion.Estado.RECHAZADA)
        self.assertFalse(Movement.objects.exists())

    def test_no_se_rechaza_una_aprobada(self):
        aprobar_devolucion(self.devolucion)
        with self.assertRaises(ReturnError):
            rechazar_devolucion(self.devolucion, "tarde")

    def test_no_se_cancela_una_completada(self):
        aprobar_devolucion(self.devolucion)
        with self.assertRaises(ReturnError):
            cancelar_devolucion(self.devolucion, "tarde")
        with self.assertRaises(ReturnError):
            recalcular_totales(self.devolucion)

    def test_cancelar_solicitada(self):
        cancelar_devolucion(self.devolucion, "El cliente desistió")
        self.assertEqual(self.devolucion.estado, Devolucion.Estado.CANCELADA)
        with self.assertRaises(ReturnError):
            cancelar_devolucion(self.devolucion, "otra vez")

    def test_no_se_aprueba_dos_veces(self):
        aprobar_devolucion(self.devolucion)
        with self.assertRaises(ReturnError):
            aprobar_devolucion(self.devolucion)

    def test_totales_desactualizados_bloquean_la_aprobacion(self):
        Devolucion.objects.filter(pk=self.devolucion.pk).update(total=Decimal("1.00"))
        self.devolucion.refresh_from_db()
        self.assertFalse(totales_vigentes(self.devolucion))

        with self.assertRaises(ReturnError) as ctx:
            aprobar_devolucion(self.devolucion)
        self.assertIn("desactualizados", str(ctx.exception))

        recalcular_totales(self.devolucion)
        self.assertTrue(totales_vigentes(self.devolucion))
        aprobar_devolucion(self.devolucion)
        self.assertEqual(self.devolucion.estado, Devolucion.Estado.COMPLETADA)

    def test_numeracion_correlativa(self):
        otra = crear_devolucion(
            tipo=Devolucion.Tipo.AJUSTE_PEDIDO,
            pedido=self.pedido,
            lineas=[{"detalle_pedido": self.pedido.detalles.get(), "cantidad": 1}],
            motivo="Otra",
        )
        actual = int(self.devolucion.numero.split("-")[1])
        self.assertEqual(otra.numero, f"DEV-{actual + 1:06d}")
