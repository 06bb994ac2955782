# facturacion/services/sifen/client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import io
import logging
import os
import tempfile
import uuid
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import requests
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from django.conf import settings
from lxml import etree
from zeep import ns as zeep_ns
from zeep.transports import Transport

from facturacion.models import Empresa
from facturacion.services.sifen.signer import cargar_pkcs12

logger = logging.getLogger("facturacion.sifen")


# =========================
# Configuración de endpoints SIFEN (tomados desde settings)
# =========================

SIFEN_URL_TEST = getattr(settings, "SIFEN_URL_TEST", "https://sifen-test.set.gov.py/de/ws")
SIFEN_URL_PROD = getattr(settings, "SIFEN_URL_PROD", "https://sifen.set.gov.py/de/ws")

# Parámetros de red. Sin reintentos aquí: los reintenta celery con el mismo XML.
SIFEN_SSL_VERIFY = getattr(settings, "SIFEN_SSL_VERIFY", True)
SIFEN_CONNECT_TIMEOUT = getattr(settings, "SIFEN_CONNECT_TIMEOUT", 10)  # segundos
SIFEN_READ_TIMEOUT = getattr(settings, "SIFEN_READ_TIMEOUT", 60)  # segundos

SIFEN_NS = "http://ekuatia.set.gov.py/sifen/xsd"
SOAP_ENV_NS = zeep_ns.SOAP_ENV_12
CONTENT_TYPE = "application/soap+xml; charset=utf-8"

CODIGO_ERROR_COMUNICACION = "9999"
CODIGOS_EXITO = ("0100", "0200")
# Aceptación de un lote en recibe-lote (el resultado por DE llega en la consulta)
CODIGOS_LOTE_RECIBIDO = ("0300",)

# SOAPAction -> ruta relativa a la URL base
ENDPOINTS = {
    "recibe": "/sync/recibe.wsdl",
    "recibe-lote": "/async/recibe-lote.wsdl",
    "consulta": "/consultas/consulta.wsdl",
    "consulta-lote": "/consultas/consulta-lote.wsdl",
}


@dataclass
class SifenResponse:
    """
    Respuesta normalizada de recepción de un DE (o de un DE dentro de un lote).
    """

    ok: bool
    codigo: str
    mensaje: str = ""
    cdc: Optional[str] = None
    protocolo: Optional[str] = None
    estado: Optional[str] = None
    raw: str = ""
    transporte_fallido: bool = False


@dataclass
class SifenConsultaResponse:
    ok: bool
    codigo: str
    mensaje: str = ""
    cdc: Optional[str] = None
    estado: Optional[str] = None
    protocolo: Optional[str] = None
    ruc_emisor: Optional[str] = None
    razon_social_emisor: Optional[str] = None
    ruc_receptor: Optional[str] = None
    razon_social_receptor: Optional[str] = None
    raw: str = ""
    transporte_fallido: bool = False


@dataclass
class SifenLoteResponse:
    ok: bool
    codigo: str
    mensaje: str = ""
    numero_lote: Optional[str] = None
    estado: Optional[str] = None
    documentos: List[SifenResponse] = field(default_factory=list)
    raw: str = ""
    transporte_fallido: bool = False


class _RespuestaHTTPInvalida(Exception):
    """Respuesta HTTP fuera del rango 2xx."""


class _RespuestaSinResultado(Exception):
    """Sobre SOAP legible pero sin dCodRes ni dEstRes: SIFEN no se pronunció."""


@contextmanager
def archivos_certificado(empresa: Empresa) -> Iterator[Tuple[str, str]]:
    """
    Yield (cert_path, key_path) en PEM para `requests.Session.cert`.

    Los archivos se crean con permisos 600 a partir del PKCS12 de la empresa y
    se eliminan al salir del contexto.
    """
    private_key, cert, additional_certs = cargar_pkcs12(empresa)

    cert_pem = cert.public_bytes(Encoding.PEM) + b"".join(
        extra.public_bytes(Encoding.PEM) for extra in additional_certs
    )
    key_pem = private_key.private_bytes(
        Encoding.PEM,
        PrivateFormat.PKCS8,
        NoEncryption(),
    )

    with tempfile.NamedTemporaryFile(mode="wb", suffix=".pem", delete=False) as cert_file:
        cert_file.write(cert_pem)
        cert_path = cert_file.name
    with tempfile.NamedTemporaryFile(mode="wb", suffix=".pem", delete=False) as key_file:
        key_file.write(key_pem)
        key_path = key_file.name
    try:
        os.chmod(cert_path, 0o600)
        os.chmod(key_path, 0o600)
        yield (cert_path, key_path)
    finally:
        Path(cert_path).unlink(missing_ok=True)
        Path(key_path).unlink(missing_ok=True)


def _texto(root: etree._Element, tag: str) -> Optional[str]:
    elem = root.find(f".//{{*}}{tag}")
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


def _exigir_resultado(root: etree._Element) -> str:
    """
    dCodRes de la respuesta. Sin dCodRes ni dEstRes no hay resultado que aplicar.
    """
    codigo = _texto(root, "dCodRes") or ""
    if not codigo and not _texto(root, "dEstRes"):
        raise _RespuestaSinResultado("Respuesta SIFEN sin dCodRes ni dEstRes.")
    return codigo


def _nuevo_did() -> str:
    return uuid.uuid4().hex


def crear_zip_lote(xmls: Sequence[bytes | str]) -> bytes:
    """
    ZIP en memoria con una entrada documento_<n>.xml por DE firmado.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for numero, xml in enumerate(xmls, start=1):
            data = xml.encode("utf-8") if isinstance(xml, str) else xml
            zf.writestr(f"documento_{numero}.xml", data)
    return buffer.getvalue()


class SifenClient:
    """
    Cliente SOAP 1.2 para los Web Services de SIFEN:

    - recibe:        envío sincrónico de un DE (rEnviDE)
    - recibe-lote:   envío asincrónico de un lote (rEnvioLote)
    - consulta:      consulta de un DE por CDC (rEnviConsDe)
    - consulta-lote: consulta del resultado de un lote (rEnviConsLoteDe)

    El ambiente (Pruebas/Producción) se decide con empresa.ambiente.
    Cualquier falla de transporte devuelve una respuesta con código 9999 y
    transporte_fallido=True; nunca se lanza hacia el workflow.
    """

    def __init__(
        self,
        empresa: Empresa,
        session: Optional[requests.Session] = None,
        timeout: Optional[Tuple[float, float]] = None,
    ):
        self.empresa = empresa
        self.timeout = timeout or (SIFEN_CONNECT_TIMEOUT, SIFEN_READ_TIMEOUT)

        if empresa.ambiente == Empresa.AMBIENTE_PRODUCCION:
            self.base_url = SIFEN_URL_PROD.rstrip("/")
        else:
            self.base_url = SIFEN_URL_TEST.rstrip("/")

        if session is None:
            session = requests.Session()
            session.verify = SIFEN_SSL_VERIFY
        self.session = session

        # Los sobres se arman con lxml; zeep.Transport hace el POST con el
        # timeout (connect, read) por operación
        self.transport = Transport(session=session, operation_timeout=self.timeout)
        session.headers.update({"User-Agent": "FacturacionSIFEN/1.0 (Python/Zeep)"})

        logger.info(
            "Inicializando SifenClient para empresa %s (%s) ambiente=%s "
            "[base_url=%s, verify_ssl=%s, timeout=%s]",
            empresa.razon_social,
            empresa.ruc,
            empresa.ambiente,
            self.base_url,
            SIFEN_SSL_VERIFY,
            self.timeout,
        )

    # -------------------------
    # Transporte
    # -------------------------

    def _envelope(self, body: etree._Element) -> etree._Element:
        envelope = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap={"env": SOAP_ENV_NS})
        etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
        soap_body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
        soap_body.append(body)
        return envelope

    def _post(self, accion: str, body: etree._Element) -> bytes:
        url = f"{self.base_url}{ENDPOINTS[accion]}"
        headers = {"Content-Type": CONTENT_TYPE, "SOAPAction": accion}
        envelope = self._envelope(body)

        # Certificado de cliente (mTLS) solo durante la llamada
        cert_previo = self.session.cert
        with archivos_certificado(self.empresa) as cert:
            self.session.cert = cert
            try:
                response = self.transport.post_xml(url, envelope, headers)
            finally:
                self.session.cert = cert_previo

        if not 200 <= response.status_code < 300:
            logger.error(
                "SIFEN %s respondió HTTP %s: %s",
                accion,
                response.status_code,
                (response.text or "")[:500],
            )
            raise _RespuestaHTTPInvalida(f"Error en respuesta SIFEN: HTTP {response.status_code}")
        return response.content

    def _ejecutar(
        self,
        accion: str,
        body: etree._Element,
        parser: Callable[[etree._Element, str], object],
        fallo: Callable[[str, str], object],
    ):
        """
        POST + parseo. Las fallas de red, HTTP o parseo se traducen con `fallo`.
        Los errores de certificado (CertificateError) se propagan.
        """
        raw = ""
        try:
            content = self._post(accion, body)
            raw = content.decode("utf-8", errors="replace")
            root = etree.fromstring(content)
            return parser(root, raw)
        except requests.Timeout as exc:
            logger.exception("Timeout al llamar a SIFEN %s: %s", accion, exc)
            return fallo(f"Tiempo de espera agotado: {exc}", raw)
        except requests.RequestException as exc:
            logger.exception("Error de red al llamar a SIFEN %s: %s", accion, exc)
            return fallo(f"Error de comunicación: {exc}", raw)
        except _RespuestaHTTPInvalida as exc:
            return fallo(str(exc), raw)
        except _RespuestaSinResultado as exc:
            logger.error("Respuesta SIFEN %s sin resultado: %s", accion, raw[:500])
            return fallo(str(exc), raw)
        except etree.XMLSyntaxError as exc:
            logger.exception("Respuesta SIFEN %s ilegible: %s", accion, exc)
            return fallo(f"Error parseando respuesta: {exc}", raw)

    # -------------------------
    # Parsers
    # -------------------------

    @staticmethod
    def _parse_respuesta(root: etree._Element, raw: str) -> SifenResponse:
        codigo = _exigir_resultado(root)
        return SifenResponse(
            ok=codigo in CODIGOS_EXITO,
            codigo=codigo,
            mensaje=_texto(root, "dMsgRes") or "",
            cdc=_texto(root, "dCDC") or _texto(root, "Id"),
            protocolo=_texto(root, "dProtAut"),
            estado=_texto(root, "dEstRes"),
            raw=raw,
        )

    @staticmethod
    def _parse_consulta(root: etree._Element, raw: str) -> SifenConsultaResponse:
        codigo = _exigir_resultado(root)
        return SifenConsultaResponse(
            ok=codigo in CODIGOS_EXITO,
            codigo=codigo,
            mensaje=_texto(root, "dMsgRes") or "",
            cdc=_texto(root, "dCDC"),
            estado=_texto(root, "dEstRes"),
            protocolo=_texto(root, "dProtAut"),
            ruc_emisor=_texto(root, "dRucEm"),
            razon_social_emisor=_texto(root, "dNomEmi"),
            ruc_receptor=_texto(root, "dRucRec"),
            razon_social_receptor=_texto(root, "dNomRec"),
            raw=raw,
        )

    @staticmethod
    def _parse_lote(root: etree._Element, raw: str) -> SifenLoteResponse:
        documentos: List[SifenResponse] = []
        for resultado in root.iterfind(".//{*}gResProcLote"):
            codigo = _texto(resultado, "dCodRes") or ""
            documentos.append(
                SifenResponse(
                    ok=codigo in CODIGOS_EXITO,
                    codigo=codigo,
                    mensaje=_texto(resultado, "dMsgRes") or "",
                    cdc=_texto(resultado, "id") or _texto(resultado, "dCDC"),
                    protocolo=_texto(resultado, "dProtAut"),
                    estado=_texto(resultado, "dEstRes"),
                    raw=etree.tostring(resultado, encoding="unicode"),
                )
            )

        # El código de cabecera del lote es el primero fuera de gResProcLote
        codigo = ""
        for elem in root.iterfind(".//{*}dCodRes"):
            if not any(etree.QName(a).localname == "gResProcLote" for a in elem.iterancestors()):
                codigo = (elem.text or "").strip()
                break
        mensaje = ""
        for elem in root.iterfind(".//{*}dMsgRes"):
            if not any(etree.QName(a).localname == "gResProcLote" for a in elem.iterancestors()):
                mensaje = (elem.text or "").strip()
                break

        if not codigo and not documentos and _texto(root, "dCodResLot") is None:
            raise _RespuestaSinResultado("Respuesta SIFEN sin código de resultado del lote.")

        return SifenLoteResponse(
            ok=codigo in CODIGOS_EXITO or codigo in CODIGOS_LOTE_RECIBIDO,
            codigo=codigo,
            mensaje=mensaje,
            numero_lote=_texto(root, "dNumLote") or _texto(root, "dProtConsLote"),
            estado=_texto(root, "dCodResLot") or _texto(root, "dEstRes"),
            documentos=documentos,
            raw=raw,
        )

    # -------------------------
    # Operaciones
    # -------------------------

    def enviar_documento(self, xml_firmado: bytes | str) -> SifenResponse:
        """
        Envía un DE firmado (rEnviDE). El DE viaja como XML dentro de xDE.
        """
        xml_bytes = xml_firmado.encode("utf-8") if isinstance(xml_firmado, str) else xml_firmado

        body = etree.Element(f"{{{SIFEN_NS}}}rEnviDE", nsmap={None: SIFEN_NS})
        etree.SubElement(body, f"{{{SIFEN_NS}}}dId").text = _nuevo_did()
        x_de = etree.SubElement(body, f"{{{SIFEN_NS}}}xDE")
        x_de.append(etree.fromstring(xml_bytes))

        logger.info("Enviando DE a SIFEN (%s bytes)", len(xml_bytes))
        respuesta = self._ejecutar(
            "recibe",
            body,
            self._parse_respuesta,
            lambda mensaje, raw: SifenResponse(
                ok=False,
                codigo=CODIGO_ERROR_COMUNICACION,
                mensaje=mensaje,
                raw=raw,
                transporte_fallido=True,
            ),
        )
        logger.info("Respuesta SIFEN recibe codigo=%s mensaje=%s", respuesta.codigo, respuesta.mensaje)
        return respuesta

    def enviar_lote(self, xmls_firmados: Sequence[bytes | str]) -> SifenLoteResponse:
        """
        Envía un lote (rEnvioLote): ZIP base64 de documento_<n>.xml en xDE.
        Retorna de inmediato con el número de lote; el resultado se consulta luego.
        """
        if not xmls_firmados:
            raise ValueError("El lote no contiene documentos.")

        zip_b64 = base64.b64encode(crear_zip_lote(xmls_firmados)).decode("ascii")
        body = etree.Element(f"{{{SIFEN_NS}}}rEnvioLote", nsmap={None: SIFEN_NS})
        etree.SubElement(body, f"{{{SIFEN_NS}}}dId").text = _nuevo_did()
        etree.SubElement(body, f"{{{SIFEN_NS}}}xDE").text = zip_b64

        logger.info("Enviando lote de %s documentos a SIFEN", len(xmls_firmados))
        return self._ejecutar(
            "recibe-lote",
            body,
            self._parse_lote,
            lambda mensaje, raw: SifenLoteResponse(
                ok=False,
                codigo=CODIGO_ERROR_COMUNICACION,
                mensaje=mensaje,
                raw=raw,
                transporte_fallido=True,
            ),
        )

    def consultar_documento(self, cdc: str) -> SifenConsultaResponse:
        body = etree.Element(f"{{{SIFEN_NS}}}rEnviConsDe", nsmap={None: SIFEN_NS})
        etree.SubElement(body, f"{{{SIFEN_NS}}}dId").text = _nuevo_did()
        etree.SubElement(body, f"{{{SIFEN_NS}}}dCDC").text = cdc

        logger.info("Consultando DE en SIFEN cdc=%s", cdc)
        return self._ejecutar(
            "consulta",
            body,
            self._parse_consulta,
            lambda mensaje, raw: SifenConsultaResponse(
                ok=False,
                codigo=CODIGO_ERROR_COMUNICACION,
                mensaje=mensaje,
                cdc=cdc,
                raw=raw,
                transporte_fallido=True,
            ),
        )

    def consultar_lote(self, numero_lote: str) -> SifenLoteResponse:
        body = etree.Element(f"{{{SIFEN_NS}}}rEnviConsLoteDe", nsmap={None: SIFEN_NS})
        etree.SubElement(body, f"{{{SIFEN_NS}}}dId").text = _nuevo_did()
        etree.SubElement(body, f"{{{SIFEN_NS}}}dNumLote").text = numero_lote

        logger.info("Consultando lote SIFEN %s", numero_lote)
        return self._ejecutar(
            "consulta-lote",
            body,
            self._parse_lote,
            lambda mensaje, raw: SifenLoteResponse(
                ok=False,
                codigo=CODIGO_ERROR_COMUNICACION,
                mensaje=mensaje,
                numero_lote=numero_lote,
                raw=raw,
                transporte_fallido=True,
            ),
        )
