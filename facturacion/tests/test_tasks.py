# facturacion/tests/test_tasks.py
from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

from celery.exceptions import Retry
from django.test import TestCase
from django.utils import timezone

from facturacion.models import Invoice
from facturacion.services.sifen.xml_invoice_builder import XMLBuildError
from facturacion.tasks import (
    consultar_estado_task,
    consultar_lote_task,
    emitir_factura_task,
    reintentar_envios_pendientes,
)
from facturacion.tests.helpers import crear_entidades, factura_250, forzar_estado


class EmitirTaskTests(TestCase):
    def setUp(self) -> None:
        _, _, self.punto = crear_entidades()
        self.invoice = factura_250(self.punto)

    @patch("facturacion.tasks.consultar_estado_task.apply_async")
    @patch("facturacion.tasks.emitir_factura_sync")
    def test_pendiente_agenda_consulta(self, emitir, agendar):
        emitir.return_value = {"ok": False, "estado": "ENVIADA", "pendiente": True}

        resultado = emitir_factura_task(self.invoice.pk)

        self.assertTrue(resultado["pendiente"])
        agendar.assert_called_once_with(args=[self.invoice.pk], countdown=60)

    @patch("facturacion.tasks.consultar_estado_task.apply_async")
    @patch("facturacion.tasks.emitir_factura_sync")
    def test_error_de_datos_no_se_reintenta(self, emitir, agendar):
        emitir.side_effect = XMLBuildError("Falta timbrado")

        resultado = emitir_factura_task(self.invoice.pk)

        self.assertFalse(resultado["ok"])
        self.assertIn("timbrado", resultado["error"])
        agendar.assert_not_called()

    def test_documento_inexistente(self):
        resultado = emitir_factura_task(999999)
        self.assertEqual(resultado["error"], "InvoiceDoesNotExist")


class ConsultaTaskTests(TestCase):
    def setUp(self) -> None:
        _, _, self.punto = crear_entidades()
        self.invoice = forzar_estado(factura_250(self.punto), Invoice.Estado.ENVIADA, cdc="0" * 44)

    @patch("facturacion.tasks.consultar_estado_sync")
    def test_sigue_enviada_reprograma(self, consultar):
        consultar.return_value = {"ok": False, "pendiente": True}
        with self.assertRaises(Retry):
            consultar_estado_task(self.invoice.pk)

    @patch("facturacion.tasks.consultar_estado_sync")
    def test_resuelta_no_reprograma(self, consultar):
        def aprobar(invoice):
            forzar_estado(invoice, Invoice.Estado.APROBADA)
            return {"ok": True, "estado": Invoice.Estado.APROBADA}

        consultar.side_effect = aprobar

        resultado = consultar_estado_task(self.invoice.pk)

        self.assertTrue(resultado["ok"])

    @patch("facturacion.tasks.consultar_lote_sync")
    def test_lote_con_pendientes_reprograma(self, consultar):
        consultar.return_value = {"ok": True, "procesados": 1, "pendientes": 1}
        with self.assertRaises(Retry):
            consultar_lote_task("555")

    @patch("facturacion.tasks.consultar_lote_sync")
    def test_lote_resuelto(self, consultar):
        consultar.return_value = {"ok": True, "procesados": 2, "pendientes": 0}
        self.assertEqual(consultar_lote_task("555")["procesados"], 2)


class ReenvioPeriodicoTests(TestCase):
    def setUp(self) -> None:
        _, _, self.punto = crear_entidades()
        antes = timezone.now() - timedelta(hours=1)
        self.sin_respuesta = forzar_estado(
            factura_250(self.punto),
            Invoice.Estado.ENVIADA,
            codigo_respuesta="9999",
            updated_at=antes,
            fecha_envio=antes,
        )
        self.en_lote = forzar_estado(
            factura_250(self.punto),
            Invoice.Estado.ENVIADA,
            codigo_respuesta="9999",
            numero_lote="555",
            updated_at=antes,
        )
        self.reciente = forzar_estado(
            factura_250(self.punto),
            Invoice.Estado.ENVIADA,
            codigo_respuesta="9999",
        )

    @patch("facturacion.tasks.reenviar_factura_sync")
    def test_reenvia_solo_sueltos_y_vencidos(self, reenviar):
        reenviar.return_value = {"ok": True, "estado": Invoice.Estado.APROBADA}

        resultado = reintentar_envios_pendientes()

        self.assertEqual(resultado["reenviados"], 1)
        self.assertEqual(resultado["resueltos"], 1)
        reenviar.assert_called_once()
        self.assertEqual(reenviar.call_args.args[0].pk, self.sin_respuesta.pk)
