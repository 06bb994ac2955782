# facturacion/services/sifen/signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, List, Tuple

import pytz
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12
from django.utils import timezone
from lxml import etree

from facturacion.models import Empresa

logger = logging.getLogger("facturacion.sifen")

DS_NS = "http://www.w3.org/2000/09/xmldsig#"
SIFEN_NS = "http://ekuatia.set.gov.py/sifen/xsd"

ALG_C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ALG_ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
ALG_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
ALG_SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"

# (empresa_id, ruta del .p12) -> (private_key, cert, additional_certs)
_CERT_CACHE: Dict[Tuple[object, str], Tuple[object, x509.Certificate, List[x509.Certificate]]] = {}
_CERT_CACHE_LOCK = threading.Lock()


class CertificateError(Exception):
    """Errores relacionados con certificado/carga de PKCS12."""


class SignatureError(Exception):
    """Errores al firmar o al leer la firma de un DE."""


@dataclass
class VerificationResult:
    ok: bool
    motivo: str = ""


def limpiar_cache_certificados() -> None:
    """
    Descarta los certificados cargados (rotación de certificado, tests).
    """
    with _CERT_CACHE_LOCK:
        _CERT_CACHE.clear()


def _verificar_vigencia(empresa: Empresa, cert: x509.Certificate) -> None:
    now = timezone.now()
    try:
        cert_start = cert.not_valid_before_utc
        cert_end = cert.not_valid_after_utc
    except AttributeError:
        utc = pytz.UTC
        cert_start = utc.localize(cert.not_valid_before)
        cert_end = utc.localize(cert.not_valid_after)

    if now < cert_start or now > cert_end:
        logger.warning(
            "Certificado de empresa %s fuera de vigencia. Válido: %s hasta %s. Ahora: %s",
            empresa.ruc,
            cert_start,
            cert_end,
            now,
        )
        raise CertificateError(
            f"Certificado fuera de vigencia. Válido desde {cert_start} hasta {cert_end}"
        )


def _leer_pkcs12(empresa: Empresa, cert_path: str) -> Tuple[object, x509.Certificate, List[x509.Certificate]]:
    password = empresa.certificado_password
    if not password:
        raise CertificateError(
            f"La empresa {empresa.ruc} no tiene contraseña de certificado configurada."
        )

    try:
        with open(cert_path, "rb") as f:
            pkcs12_data = f.read()
    except OSError as exc:
        logger.exception("Error leyendo archivo .p12: %s", exc)
        raise CertificateError(f"Error leyendo archivo de certificado: {exc}") from exc

    try:
        private_key, cert, additional_certs = pkcs12.load_key_and_certificates(
            pkcs12_data,
            password.encode("utf-8"),
            backend=default_backend(),
        )
    except ValueError as exc:
        logger.exception("Error cargando PKCS12: %s", exc)
        raise CertificateError(f"Error al cargar el archivo PKCS12: {exc}") from exc

    if private_key is None or cert is None:
        raise CertificateError(
            "No se pudo extraer clave privada/certificado desde el archivo PKCS12."
        )
    return private_key, cert, list(additional_certs or [])


def cargar_pkcs12(empresa: Empresa) -> Tuple[object, x509.Certificate, List[x509.Certificate]]:
    """
    Devuelve (private_key, certificate, additional_certs) de la empresa.

    El PKCS12 se lee una sola vez por proceso (por empresa y archivo); la carga
    está protegida por un lock para que hilos concurrentes no lo lean dos veces.
    La vigencia del certificado se verifica en cada llamada.
    """
    if not empresa.certificado:
        raise CertificateError(f"La empresa {empresa.ruc} no tiene certificado .p12 cargado.")

    cert_path = empresa.certificado.path
    if not os.path.exists(cert_path):
        raise CertificateError(f"No se encuentra el archivo de certificado en: {cert_path}")

    key = (empresa.pk, cert_path)
    with _CERT_CACHE_LOCK:
        cargado = _CERT_CACHE.get(key)
        if cargado is None:
            cargado = _leer_pkcs12(empresa, cert_path)
            _CERT_CACHE[key] = cargado
            logger.info("Certificado de %s cargado desde %s", empresa.ruc, cert_path)

    _verificar_vigencia(empresa, cargado[1])
    return cargado


def _canonicalize(element: etree._Element) -> bytes:
    """
    Canonicalización C14N INCLUSIVA.
    """
    return etree.tostring(
        element,
        method="c14n",
        exclusive=False,
        with_comments=False,
    )


def _cert_b64(cert: x509.Certificate) -> str:
    return base64.b64encode(cert.public_bytes(Encoding.DER)).decode("ascii")


def _find_by_id(root: etree._Element, node_id: str) -> etree._Element | None:
    for elem in root.iter():
        if elem.get("Id") == node_id:
            return elem
    return None


def firmar_xml(empresa: Empresa, xml_str: str) -> bytes:
    """
    Firma un DE con XMLDSig enveloped.

    - CanonicalizationMethod: C14N inclusivo
    - SignatureMethod: RSA-SHA256 (PKCS#1 v1.5)
    - Reference: URI="#<CDC>", transforms enveloped-signature + C14N, digest SHA-256
    - KeyInfo/X509Data/X509Certificate con el certificado del emisor

    <ds:Signature> se agrega a <rDE> a continuación de <DE>.
    """
    if not xml_str:
        raise ValueError("xml_str no puede ser vacío al firmar.")

    private_key, cert, _additional = cargar_pkcs12(empresa)

    try:
        root = etree.fromstring(xml_str.encode("utf-8"))
    except etree.XMLSyntaxError as exc:
        logger.exception("XML mal formado al intentar firmar: %s", exc)
        raise SignatureError(f"XML mal formado al intentar firmar: {exc}") from exc

    de = root.find(f"{{{SIFEN_NS}}}DE")
    if de is None or not de.get("Id"):
        raise SignatureError("El XML no contiene el nodo DE con atributo Id.")
    node_id = de.get("Id")

    try:
        de_digest = hashlib.sha256(_canonicalize(de)).digest()

        signature = etree.Element(f"{{{DS_NS}}}Signature", nsmap={"ds": DS_NS})
        signed_info = etree.SubElement(signature, f"{{{DS_NS}}}SignedInfo")
        etree.SubElement(signed_info, f"{{{DS_NS}}}CanonicalizationMethod", Algorithm=ALG_C14N)
        etree.SubElement(signed_info, f"{{{DS_NS}}}SignatureMethod", Algorithm=ALG_RSA_SHA256)

        reference = etree.SubElement(signed_info, f"{{{DS_NS}}}Reference", URI=f"#{node_id}")
        transforms = etree.SubElement(reference, f"{{{DS_NS}}}Transforms")
        etree.SubElement(transforms, f"{{{DS_NS}}}Transform", Algorithm=ALG_ENVELOPED)
        etree.SubElement(transforms, f"{{{DS_NS}}}Transform", Algorithm=ALG_C14N)
        etree.SubElement(reference, f"{{{DS_NS}}}DigestMethod", Algorithm=ALG_SHA256)
        etree.SubElement(reference, f"{{{DS_NS}}}DigestValue").text = (
            base64.b64encode(de_digest).decode("ascii")
        )

        signature_value = etree.SubElement(signature, f"{{{DS_NS}}}SignatureValue")

        key_info = etree.SubElement(signature, f"{{{DS_NS}}}KeyInfo")
        x509_data = etree.SubElement(key_info, f"{{{DS_NS}}}X509Data")
        etree.SubElement(x509_data, f"{{{DS_NS}}}X509Certificate").text = _cert_b64(cert)

        # SignedInfo se canonicaliza ya insertado en el documento
        de.addnext(signature)
        signed_info_canonical = _canonicalize(signed_info)

        signature_bytes = private_key.sign(
            signed_info_canonical,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        signature_value.text = base64.b64encode(signature_bytes).decode("ascii")
    except (TypeError, ValueError) as exc:
        logger.exception("Error al firmar DE %s: %s", node_id, exc)
        raise SignatureError(f"Error al firmar el XML: {exc}") from exc

    xml_firmado = etree.tostring(
        root,
        encoding="UTF-8",
        xml_declaration=True,
        pretty_print=False,
    )
    logger.info(
        "DE %s firmado (RSA-SHA256) para empresa %s (%s)",
        node_id,
        empresa.razon_social,
        empresa.ruc,
    )
    return xml_firmado


def _b64decode(elem: etree._Element) -> bytes:
    # Los saltos de línea dentro del valor son válidos en XMLDSig
    return base64.b64decode("".join((elem.text or "").split()), validate=True)


def verificar_firma(xml: bytes | str) -> VerificationResult:
    """
    Verifica la firma embebida de un DE firmado:

    1. Extrae el certificado de KeyInfo.
    2. Recalcula el digest del elemento referenciado y lo compara.
    3. Verifica SignatureValue sobre SignedInfo canonicalizado.

    Retorna VerificationResult(ok, motivo); un base64 mal formado en la firma
    también es ok=False. Lanza SignatureError si el XML no se puede parsear y
    CertificateError si el certificado embebido no es un DER válido.
    """
    xml_bytes = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        root = etree.fromstring(xml_bytes)
    except etree.XMLSyntaxError as exc:
        raise SignatureError(f"XML mal formado al verificar firma: {exc}") from exc

    signature = root.find(f".//{{{DS_NS}}}Signature")
    if signature is None:
        return VerificationResult(False, "El documento no contiene ds:Signature.")

    signed_info = signature.find(f"{{{DS_NS}}}SignedInfo")
    reference = signed_info.find(f"{{{DS_NS}}}Reference") if signed_info is not None else None
    digest_elem = reference.find(f"{{{DS_NS}}}DigestValue") if reference is not None else None
    sig_value_elem = signature.find(f"{{{DS_NS}}}SignatureValue")
    cert_elem = signature.find(f".//{{{DS_NS}}}X509Certificate")
    if None in (signed_info, reference, digest_elem, sig_value_elem, cert_elem):
        return VerificationResult(False, "Estructura ds:Signature incompleta.")

    try:
        cert_der = _b64decode(cert_elem)
        signature_value = _b64decode(sig_value_elem)
    except binascii.Error as exc:
        return VerificationResult(False, f"Base64 inválido en ds:Signature: {exc}")

    try:
        cert = x509.load_der_x509_certificate(cert_der, default_backend())
    except ValueError as exc:
        raise CertificateError(f"Certificado embebido ilegible: {exc}") from exc

    uri = reference.get("URI") or ""
    target = _find_by_id(root, uri.lstrip("#"))
    if target is None:
        return VerificationResult(False, f"No se encontró el elemento referenciado {uri}.")

    digest = base64.b64encode(hashlib.sha256(_canonicalize(target)).digest()).decode("ascii")
    if digest != (digest_elem.text or "").strip():
        return VerificationResult(False, "El digest del documento no coincide (contenido alterado).")

    try:
        cert.public_key().verify(
            signature_value,
            _canonicalize(signed_info),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except InvalidSignature:
        return VerificationResult(False, "SignatureValue inválido para el certificado embebido.")

    return VerificationResult(True, "")
