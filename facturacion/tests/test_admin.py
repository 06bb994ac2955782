# facturacion/tests/test_admin.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase
from django.urls import reverse

from facturacion.admin import InvoiceAdmin, InvoiceLineInline
from facturacion.models import Invoice
from facturacion.tests.helpers import crear_entidades, factura_250, forzar_estado

User = get_user_model()


class InvoiceAdminTests(TestCase):
    def setUp(self) -> None:
        self.admin_user = User.objects.create_superuser(username="admin", password="x", email="a@a.com")
        _, _, self.punto = crear_entidades()
        self.invoice = factura_250(self.punto)
        self.request = RequestFactory().get("/admin/")
        self.request.user = self.admin_user
        self.model_admin = InvoiceAdmin(Invoice, admin.site)
        self.inline = InvoiceLineInline(Invoice, admin.site)

    def test_borrador_es_editable(self):
        readonly = self.model_admin.get_readonly_fields(self.request, self.invoice)

        self.assertNotIn("razon_social_receptor", readonly)
        self.assertIn("xml_firmado", readonly)
        self.assertTrue(self.inline.has_add_permission(self.request, self.invoice))
        self.assertTrue(self.inline.has_change_permission(self.request, self.invoice))

    def test_aprobada_queda_congelada(self):
        forzar_estado(self.invoice, Invoice.Estado.APROBADA)

        readonly = self.model_admin.get_readonly_fields(self.request, self.invoice)

        for campo in ("razon_social_receptor", "fecha_emision", "punto_emision", "qr_url"):
            self.assertIn(campo, readonly)
        self.assertFalse(self.inline.has_add_permission(self.request, self.invoice))
        self.assertFalse(self.inline.has_change_permission(self.request, self.invoice))
        self.assertFalse(self.inline.has_delete_permission(self.request, self.invoice))
        self.assertFalse(self.model_admin.has_delete_permission(self.request, self.invoice))

    def test_post_sobre_aprobada_no_modifica(self):
        forzar_estado(self.invoice, Invoice.Estado.APROBADA)
        self.client.force_login(self.admin_user)

        self.client.post(
            reverse("admin:facturacion_invoice_change", args=[self.invoice.pk]),
            {
                "razon_social_receptor": "Otro Receptor SA",
                "observaciones": "editado",
                "lines-TOTAL_FORMS": "0",
                "lines-INITIAL_FORMS": "0",
                "pagos-TOTAL_FORMS": "0",
                "pagos-INITIAL_FORMS": "0",
            },
        )

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.razon_social_receptor, "Cliente de Prueba SA")
        self.assertEqual(self.invoice.observaciones, "")
        self.assertEqual(self.invoice.lines.count(), 2)
