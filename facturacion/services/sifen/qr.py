# facturacion/services/sifen/qr.py
# -*- coding: utf-8 -*-
"""
QR del documento aprobado: URL pública de consulta (e-Kuatia) e imagen PNG
embebida como data URI, lista para el KuDE o el frontend.
"""
from __future__ import annotations

import base64
import logging
from io import BytesIO
from urllib.parse import urlencode

import pytz
import qrcode
from django.conf import settings
from django.utils import timezone
from PIL import Image
from qrcode.image.pil import PilImage

from facturacion.models import Invoice

logger = logging.getLogger("facturacion.sifen")

SIFEN_QR_BASE_URL = getattr(
    settings,
    "SIFEN_QR_BASE_URL",
    "https://ekuatia.set.gov.py/consultas/qr",
)
SIFEN_QR_VERSION = getattr(settings, "SIFEN_QR_VERSION", 150)
SIFEN_TIMEZONE = getattr(settings, "SIFEN_TIMEZONE", "America/Asuncion")

QR_SIZE_PX = 300


def build_qr_url(invoice: Invoice) -> str:
    """
    https://ekuatia.set.gov.py/consultas/qr?nVersion=150&Id=<cdc>&dFeEmiDE=<iso>
    """
    if not invoice.cdc:
        raise ValueError(f"El documento {invoice.pk} no tiene CDC; no se puede generar el QR.")

    fecha = invoice.fecha_emision
    if timezone.is_aware(fecha):
        fecha = fecha.astimezone(pytz.timezone(SIFEN_TIMEZONE))

    params = urlencode(
        {
            "nVersion": SIFEN_QR_VERSION,
            "Id": invoice.cdc,
            "dFeEmiDE": fecha.strftime("%Y-%m-%dT%H:%M:%S"),
        }
    )
    return f"{SIFEN_QR_BASE_URL}?{params}"


def build_qr_image_data_uri(data: str) -> str:
    """
    QR PNG 300x300 (corrección M, borde 1) en memoria, como data URI.
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=1,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(
        image_factory=PilImage,
        fill_color="black",
        back_color="white",
    ).get_image()
    img = img.convert("RGB").resize((QR_SIZE_PX, QR_SIZE_PX), Image.NEAREST)

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def generar_qr(invoice: Invoice) -> tuple[str, str]:
    """
    Devuelve (qr_url, qr_imagen) para un documento con CDC.
    """
    url = build_qr_url(invoice)
    imagen = build_qr_image_data_uri(url)
    logger.debug("QR generado para documento %s (%s bytes)", invoice.pk, len(imagen))
    return url, imagen
