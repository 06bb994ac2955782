# facturacion/tests/test_client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import io
import zipfile
from contextlib import nullcontext
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase
from lxml import etree

from facturacion.models import Empresa
from facturacion.services.sifen.client import (
    CODIGO_ERROR_COMUNICACION,
    SIFEN_NS,
    SOAP_ENV_NS,
    SifenClient,
    crear_zip_lote,
)
from facturacion.tests.helpers import crear_entidades

CDC = "0180012345" "3001001000" "0000122024" "0315112345" "6789"

RESPUESTA_APROBADA = f"""<?xml version="1.0" encoding="UTF-8"?>
<env:Envelope xmlns:env="{SOAP_ENV_NS}">
  <env:Body>
    <ns2:rRetEnviDe xmlns:ns2="{SIFEN_NS}">
      <ns2:rProtDe>
        <ns2:Id>{CDC}</ns2:Id>
        <ns2:dEstRes>Aprobado</ns2:dEstRes>
        <ns2:dProtAut>987654321</ns2:dProtAut>
        <ns2:gResProc>
          <ns2:dCodRes>0260</ns2:dCodRes>
          <ns2:dMsgRes>Autorización del DE satisfactoria</ns2:dMsgRes>
        </ns2:gResProc>
      </ns2:rProtDe>
    </ns2:rRetEnviDe>
  </env:Body>
</env:Envelope>"""

RESPUESTA_LOTE_RECIBIDO = f"""<?xml version="1.0" encoding="UTF-8"?>
<env:Envelope xmlns:env="{SOAP_ENV_NS}">
  <env:Body>
    <ns2:rResEnviLoteDe xmlns:ns2="{SIFEN_NS}">
      <ns2:dCodRes>0300</ns2:dCodRes>
      <ns2:dMsgRes>Lote recibido con éxito</ns2:dMsgRes>
      <ns2:dProtConsLote>1234567890</ns2:dProtConsLote>
    </ns2:rResEnviLoteDe>
  </env:Body>
</env:Envelope>"""

RESPUESTA_CONSULTA_LOTE = f"""<?xml version="1.0" encoding="UTF-8"?>
<env:Envelope xmlns:env="{SOAP_ENV_NS}">
  <env:Body>
    <ns2:rResEnviConsLoteDe xmlns:ns2="{SIFEN_NS}">
      <ns2:dCodResLot>0362</ns2:dCodResLot>
      <ns2:dMsgResLot>Procesamiento de lote concluido</ns2:dMsgResLot>
      <ns2:dCodRes>0200</ns2:dCodRes>
      <ns2:dMsgRes>Consulta exitosa</ns2:dMsgRes>
      <ns2:gResProcLote>
        <ns2:id>{CDC}</ns2:id>
        <ns2:dEstRes>Rechazado</ns2:dEstRes>
        <ns2:gResProc>
          <ns2:dCodRes>0160</ns2:dCodRes>
          <ns2:dMsgRes>XML mal formado</ns2:dMsgRes>
        </ns2:gResProc>
      </ns2:gResProcLote>
    </ns2:rResEnviConsLoteDe>
  </env:Body>
</env:Envelope>"""


def _http(status_code: int, body: str) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = body.encode("utf-8")
    response.text = body
    return response


@patch(
    "facturacion.services.sifen.client.archivos_certificado",
    side_effect=lambda empresa: nullcontext(("/tmp/cert.pem", "/tmp/key.pem")),
)
class SifenClientTests(TestCase):
    def setUp(self) -> None:
        self.empresa, _, _ = crear_entidades()
        self.session = MagicMock()
        self.client = SifenClient(self.empresa, session=self.session)

    def _body_enviado(self) -> etree._Element:
        _, kwargs = self.session.post.call_args
        envelope = etree.fromstring(kwargs["data"])
        return envelope.find(f"{{{SOAP_ENV_NS}}}Body")[0]

    def test_envio_aprobado(self, _cert):
        certificados = []

        def post(*args, **kwargs):
            certificados.append(self.session.cert)
            return _http(200, RESPUESTA_APROBADA)

        self.session.cert = None
        self.session.post.side_effect = post

        respuesta = self.client.enviar_documento(f'<rDE xmlns="{SIFEN_NS}"><DE Id="{CDC}"/></rDE>')

        self.assertEqual(respuesta.codigo, "0260")
        self.assertEqual(respuesta.estado, "Aprobado")
        self.assertEqual(respuesta.protocolo, "987654321")
        self.assertEqual(respuesta.cdc, CDC)
        self.assertFalse(respuesta.transporte_fallido)

        args, kwargs = self.session.post.call_args
        self.assertTrue(args[0].endswith("/sync/recibe.wsdl"))
        self.assertTrue(args[0].startswith("https://sifen-test.set.gov.py"))
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/soap+xml; charset=utf-8")
        self.assertEqual(kwargs["headers"]["SOAPAction"], "recibe")
        self.assertEqual(kwargs["timeout"], self.client.timeout)
        self.assertEqual(certificados, [("/tmp/cert.pem", "/tmp/key.pem")])
        self.assertIsNone(self.session.cert)

        body = self._body_enviado()
        self.assertEqual(body.tag, f"{{{SIFEN_NS}}}rEnviDE")
        self.assertIsNotNone(body.find(f"{{{SIFEN_NS}}}xDE/{{{SIFEN_NS}}}rDE"))

    def test_produccion_usa_url_de_produccion(self, _cert):
        self.empresa.ambiente = Empresa.AMBIENTE_PRODUCCION
        client = SifenClient(self.empresa, session=self.session)
        self.assertTrue(client.base_url.startswith("https://sifen.set.gov.py"))

    def test_timeout_es_falla_de_transporte(self, _cert):
        self.session.post.side_effect = requests.Timeout("read timeout")

        respuesta = self.client.enviar_documento(f'<rDE xmlns="{SIFEN_NS}"/>')

        self.assertFalse(respuesta.ok)
        self.assertTrue(respuesta.transporte_fallido)
        self.assertEqual(respuesta.codigo, CODIGO_ERROR_COMUNICACION)

    def test_error_de_conexion_es_falla_de_transporte(self, _cert):
        self.session.post.side_effect = requests.ConnectionError("connection refused")
        respuesta = self.client.consultar_documento(CDC)
        self.assertTrue(respuesta.transporte_fallido)
        self.assertEqual(respuesta.cdc, CDC)

    def test_http_500_es_falla_de_transporte(self, _cert):
        self.session.post.return_value = _http(500, "Internal error")
        respuesta = self.client.enviar_documento(f'<rDE xmlns="{SIFEN_NS}"/>')
        self.assertTrue(respuesta.transporte_fallido)
        self.assertIn("500", respuesta.mensaje)

    def test_respuesta_ilegible_es_falla_de_transporte(self, _cert):
        self.session.post.return_value = _http(200, "<html>")
        respuesta = self.client.enviar_documento(f'<rDE xmlns="{SIFEN_NS}"/>')
        self.assertTrue(respuesta.transporte_fallido)
        self.assertEqual(respuesta.raw, "<html>")

    def test_sobre_sin_resultado_es_falla_de_transporte(self, _cert):
        vacio = f'<env:Envelope xmlns:env="{SOAP_ENV_NS}"><env:Body/></env:Envelope>'
        self.session.post.return_value = _http(200, vacio)

        respuestas = [
            self.client.enviar_documento(f'<rDE xmlns="{SIFEN_NS}"/>'),
            self.client.consultar_documento(CDC),
            self.client.enviar_lote(["<a/>"]),
            self.client.consultar_lote("1234567890"),
        ]

        for respuesta in respuestas:
            self.assertFalse(respuesta.ok)
            self.assertTrue(respuesta.transporte_fallido)
            self.assertEqual(respuesta.codigo, CODIGO_ERROR_COMUNICACION)
            self.assertEqual(respuesta.raw, vacio)

    def test_consulta_por_cdc(self, _cert):
        self.session.post.return_value = _http(200, RESPUESTA_APROBADA)

        self.client.consultar_documento(CDC)

        args, _ = self.session.post.call_args
        self.assertTrue(args[0].endswith("/consultas/consulta.wsdl"))
        body = self._body_enviado()
        self.assertEqual(body.tag, f"{{{SIFEN_NS}}}rEnviConsDe")
        self.assertEqual(body.findtext(f"{{{SIFEN_NS}}}dCDC"), CDC)

    def test_envio_de_lote(self, _cert):
        self.session.post.return_value = _http(200, RESPUESTA_LOTE_RECIBIDO)

        respuesta = self.client.enviar_lote(["<a/>", "<b/>"])

        self.assertEqual(respuesta.numero_lote, "1234567890")
        self.assertEqual(respuesta.codigo, "0300")
        self.assertTrue(respuesta.ok)
        body = self._body_enviado()
        contenido = base64.b64decode(body.findtext(f"{{{SIFEN_NS}}}xDE"))
        with zipfile.ZipFile(io.BytesIO(contenido)) as zf:
            self.assertEqual(zf.namelist(), ["documento_1.xml", "documento_2.xml"])

    def test_lote_vacio(self, _cert):
        with self.assertRaises(ValueError):
            self.client.enviar_lote([])

    def test_consulta_de_lote_por_documento(self, _cert):
        self.session.post.return_value = _http(200, RESPUESTA_CONSULTA_LOTE)

        respuesta = self.client.consultar_lote("1234567890")

        self.assertTrue(respuesta.ok)
        self.assertEqual(respuesta.codigo, "0200")
        self.assertEqual(respuesta.estado, "0362")
        self.assertEqual(len(respuesta.documentos), 1)
        doc = respuesta.documentos[0]
        self.assertEqual(doc.cdc, CDC)
        self.assertEqual(doc.codigo, "0160")
        self.assertEqual(doc.estado, "Rechazado")
        self.assertEqual(self._body_enviado().findtext(f"{{{SIFEN_NS}}}dNumLote"), "1234567890")


class ZipLoteTests(TestCase):
    def test_zip_en_memoria(self):
        data = crear_zip_lote([b"<a/>", "<b/>"])
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            self.assertEqual(zf.read("documento_2.xml"), b"<b/>")
