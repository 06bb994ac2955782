# facturacion/tests/test_totales.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from facturacion.exceptions import InvalidStateError, WorkflowError
from facturacion.models import Invoice, InvoiceLine
from facturacion.services.totales import (
    agregar_linea,
    calcular_linea,
    recalcular_totales,
    sumar_lineas,
)
from facturacion.tests.helpers import crear_entidades, factura_250, forzar_estado


def _linea(cantidad, precio, tasa=10, descuento="0"):
    return InvoiceLine(
        descripcion="x",
        cantidad=Decimal(str(cantidad)),
        precio_unitario=Decimal(str(precio)),
        descuento=Decimal(str(descuento)),
        tasa_iva=tasa,
    )


class CalcularLineaTests(SimpleTestCase):
    def test_iva_10(self):
        linea = calcular_linea(_linea(2, "100.00", 10))
        self.assertEqual(linea.subtotal, Decimal("200.00"))
        self.assertEqual(linea.iva, Decimal("20.00"))
        self.assertEqual(linea.total, Decimal("220.00"))

    def test_iva_5_con_redondeo_half_up(self):
        # 1 x 10.10 al 5% -> 0.505 -> 0.51
        linea = calcular_linea(_linea(1, "10.10", 5))
        self.assertEqual(linea.iva, Decimal("0.51"))
        self.assertEqual(linea.total, Decimal("10.61"))

    def test_descuento_reduce_la_base_imponible(self):
        linea = calcular_linea(_linea(1, "100.00", 10, descuento="10.00"))
        self.assertEqual(linea.subtotal, Decimal("100.00"))
        self.assertEqual(linea.iva, Decimal("9.00"))
        self.assertEqual(linea.total, Decimal("99.00"))

    def test_exento(self):
        linea = calcular_linea(_linea(3, "10.00", 0))
        self.assertEqual(linea.iva, Decimal("0.00"))
        self.assertEqual(linea.total, Decimal("30.00"))

    def test_valores_invalidos(self):
        for linea in (
            _linea(0, "10.00"),
            _linea(1, "-1.00"),
            _linea(1, "10.00", 7),
            _linea(1, "10.00", 10, descuento="11.00"),
        ):
            with self.subTest(linea=(linea.cantidad, linea.precio_unitario, linea.tasa_iva, linea.descuento)):
                with self.assertRaises(WorkflowError):
                    calcular_linea(linea)

    def test_sumar_lineas_por_tasa(self):
        lineas = [
            calcular_linea(_linea(2, "100.00", 10)),
            calcular_linea(_linea(1, "50.00", 5)),
            calcular_linea(_linea(1, "30.00", 0)),
        ]
        totales = sumar_lineas(lineas)
        self.assertEqual(totales["subtotal"], Decimal("280.00"))
        self.assertEqual(totales["total_iva10"], Decimal("20.00"))
        self.assertEqual(totales["total_iva5"], Decimal("2.50"))
        self.assertEqual(totales["total_iva"], Decimal("22.50"))
        self.assertEqual(totales["total"], Decimal("302.50"))


class RecalcularTotalesTests(TestCase):
    def setUp(self) -> None:
        self.empresa, self.establecimiento, self.punto = crear_entidades()

    def test_cabecera_derivada_de_lineas(self):
        invoice = factura_250(self.punto)

        self.assertEqual(invoice.subtotal, Decimal("250.00"))
        self.assertEqual(invoice.total_iva10, Decimal("20.00"))
        self.assertEqual(invoice.total_iva5, Decimal("2.50"))
        self.assertEqual(invoice.total_iva, Decimal("22.50"))
        self.assertEqual(invoice.total, Decimal("272.50"))
        self.assertEqual(invoice.saldo, Decimal("272.50"))

    def test_recalcular_corrige_cabecera_desactualizada(self):
        invoice = factura_250(self.punto)
        Invoice.objects.filter(pk=invoice.pk).update(total=Decimal("1.00"), saldo=Decimal("1.00"))
        invoice.refresh_from_db()

        recalcular_totales(invoice)

        invoice.refresh_from_db()
        self.assertEqual(invoice.total, Decimal("272.50"))
        self.assertEqual(invoice.saldo, Decimal("272.50"))

    def test_agregar_linea_recalcula(self):
        invoice = factura_250(self.punto)
        agregar_linea(
            invoice,
            descripcion="Servicio",
            cantidad=Decimal("1"),
            precio_unitario=Decimal("100.00"),
            tasa_iva=10,
        )
        invoice.refresh_from_db()
        self.assertEqual(invoice.subtotal, Decimal("350.00"))
        self.assertEqual(invoice.total, Decimal("382.50"))

    def test_documento_enviado_no_es_editable(self):
        invoice = forzar_estado(factura_250(self.punto), Invoice.Estado.ENVIADA)
        with self.assertRaises(InvalidStateError):
            recalcular_totales(invoice)
        with self.assertRaises(InvalidStateError):
            agregar_linea(invoice, descripcion="x", cantidad=Decimal("1"), precio_unitario=Decimal("1.00"))
