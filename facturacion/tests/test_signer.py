# facturacion/tests/test_signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import datetime
from unittest.mock import patch

from django.core.files.base import ContentFile
from django.test import TestCase
from lxml import etree

from facturacion.models import Empresa
from facturacion.services.sifen import signer
from facturacion.services.sifen.signer import (
    DS_NS,
    SIFEN_NS,
    CertificateError,
    SignatureError,
    cargar_pkcs12,
    firmar_xml,
    limpiar_cache_certificados,
    verificar_firma,
)
from facturacion.services.sifen.workflow import generar_documento
from facturacion.tests.helpers import (
    MediaTemporalMixin,
    crear_entidades,
    factura_250,
    generar_p12,
)


class FirmaXMLTests(MediaTemporalMixin, TestCase):
    def setUp(self) -> None:
        limpiar_cache_certificados()
        self.empresa, self.establecimiento, self.punto = crear_entidades(con_certificado=True)
        invoice = factura_250(self.punto)
        generar_documento(invoice)
        invoice.refresh_from_db()
        self.invoice = invoice

    def tearDown(self) -> None:
        limpiar_cache_certificados()

    def test_firma_y_verifica(self):
        firmado = firmar_xml(self.empresa, self.invoice.xml_generado)

        resultado = verificar_firma(firmado)
        self.assertTrue(resultado.ok, resultado.motivo)

    def test_estructura_de_la_firma(self):
        root = etree.fromstring(firmar_xml(self.empresa, self.invoice.xml_generado))

        de = root.find(f"{{{SIFEN_NS}}}DE")
        signature = de.getnext()
        self.assertEqual(signature.tag, f"{{{DS_NS}}}Signature")

        reference = signature.find(f".//{{{DS_NS}}}Reference")
        self.assertEqual(reference.get("URI"), f"#{self.invoice.cdc}")
        self.assertEqual(
            signature.find(f".//{{{DS_NS}}}SignatureMethod").get("Algorithm"),
            "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256",
        )
        self.assertEqual(
            signature.find(f".//{{{DS_NS}}}CanonicalizationMethod").get("Algorithm"),
            "http://www.w3.org/TR/2001/REC-xml-c14n-20010315",
        )
        self.assertTrue(signature.findtext(f".//{{{DS_NS}}}X509Certificate"))

    def test_contenido_alterado_no_verifica(self):
        firmado = firmar_xml(self.empresa, self.invoice.xml_generado).decode("utf-8")
        alterado = firmado.replace("<dTotGralOpe>272.50</dTotGralOpe>", "<dTotGralOpe>999.00</dTotGralOpe>")
        self.assertNotEqual(firmado, alterado)

        resultado = verificar_firma(alterado)
        self.assertFalse(resultado.ok)
        self.assertIn("digest", resultado.motivo)

    def _con_valor_corrupto(self, tag: str) -> bytes:
        root = etree.fromstring(firmar_xml(self.empresa, self.invoice.xml_generado))
        root.find(f".//{{{DS_NS}}}{tag}").text = "no-es-base64!!"
        return etree.tostring(root)

    def test_signature_value_con_base64_invalido(self):
        resultado = verificar_firma(self._con_valor_corrupto("SignatureValue"))
        self.assertFalse(resultado.ok)
        self.assertIn("Base64", resultado.motivo)

    def test_certificado_con_base64_invalido(self):
        resultado = verificar_firma(self._con_valor_corrupto("X509Certificate"))
        self.assertFalse(resultado.ok)
        self.assertIn("Base64", resultado.motivo)

    def test_documento_sin_firma(self):
        resultado = verificar_firma(self.invoice.xml_generado)
        self.assertFalse(resultado.ok)

    def test_xml_mal_formado(self):
        with self.assertRaises(SignatureError):
            firmar_xml(self.empresa, "<rDE>")
        with self.assertRaises(SignatureError):
            verificar_firma("<rDE>")

    def test_xml_sin_nodo_de(self):
        with self.assertRaises(SignatureError):
            firmar_xml(self.empresa, f'<rDE xmlns="{SIFEN_NS}"><dVerFor>150</dVerFor></rDE>')

    def test_certificado_se_lee_una_sola_vez(self):
        with patch.object(signer, "_leer_pkcs12", wraps=signer._leer_pkcs12) as leer:
            cargar_pkcs12(self.empresa)
            cargar_pkcs12(self.empresa)
        self.assertEqual(leer.call_count, 1)


class CertificadoTests(MediaTemporalMixin, TestCase):
    def setUp(self) -> None:
        limpiar_cache_certificados()
        self.empresa, _, _ = crear_entidades()

    def tearDown(self) -> None:
        limpiar_cache_certificados()

    def _guardar_p12(self, data: bytes, password: str) -> Empresa:
        self.empresa.certificado_password = password
        self.empresa.certificado.save("cert.p12", ContentFile(data), save=False)
        self.empresa.save()
        return self.empresa

    def test_sin_certificado(self):
        with self.assertRaises(CertificateError):
            cargar_pkcs12(self.empresa)

    def test_password_incorrecta(self):
        self._guardar_p12(generar_p12("correcta"), "incorrecta")
        with self.assertRaises(CertificateError):
            cargar_pkcs12(self.empresa)

    def test_sin_password(self):
        self._guardar_p12(generar_p12(), "")
        with self.assertRaises(CertificateError):
            cargar_pkcs12(self.empresa)

    def test_certificado_vencido(self):
        inicio = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=400)
        self._guardar_p12(generar_p12("clave", inicio=inicio, dias_validez=30), "clave")
        with self.assertRaises(CertificateError) as ctx:
            cargar_pkcs12(self.empresa)
        self.assertIn("vigencia", str(ctx.exception))
