# facturacion/tasks.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from facturacion.exceptions import WorkflowError
from facturacion.models import Invoice
from facturacion.services.sifen.client import CODIGO_ERROR_COMUNICACION
from facturacion.services.sifen.signer import CertificateError, SignatureError
from facturacion.services.sifen.workflow import (
    consultar_estado_sync,
    consultar_lote_sync,
    emitir_factura_sync,
    reenviar_factura_sync,
)
from facturacion.services.sifen.xml_invoice_builder import XMLBuildError

logger = logging.getLogger(__name__)

SIFEN_MAX_REINTENTOS = getattr(settings, "SIFEN_MAX_REINTENTOS", 3)
SIFEN_REENVIO_MINUTOS = getattr(settings, "SIFEN_REENVIO_MINUTOS", 10)

# Errores de negocio / datos: reintentar no cambia el resultado
ERRORES_DEFINITIVOS = (WorkflowError, XMLBuildError, CertificateError, SignatureError)


# =====================================================
# Tarea: Emisión SIFEN en background
# =====================================================


@shared_task(
    bind=True,
    max_retries=SIFEN_MAX_REINTENTOS,
    default_retry_delay=60,
)
def emitir_factura_task(self, invoice_id: int) -> Dict[str, Any]:
    """
    Tarea Celery para orquestar la EMISIÓN (recibe) de un documento.

    - Llama a emitir_factura_sync(invoice).
    - Si SIFEN no respondió (transporte), el documento queda ENVIADA y se
      agenda la consulta por CDC.
    - Errores de negocio/certificado no se reintentan.
    """
    try:
        invoice = Invoice.objects.get(pk=invoice_id)
    except Invoice.DoesNotExist:
        logger.error("emitir_factura_task: Invoice %s no existe.", invoice_id)
        return {"ok": False, "error": "InvoiceDoesNotExist"}

    logger.info("emitir_factura_task iniciado para invoice_id=%s", invoice_id)

    try:
        resultado = emitir_factura_sync(invoice)
    except ERRORES_DEFINITIVOS as exc:
        logger.error("emitir_factura_task: documento %s no emitido: %s", invoice_id, exc)
        return {"ok": False, "error": str(exc)}

    if resultado.get("pendiente"):
        consultar_estado_task.apply_async(args=[invoice_id], countdown=60)

    logger.info(
        "emitir_factura_task finalizado para invoice_id=%s, estado=%s",
        invoice_id,
        resultado.get("estado"),
    )
    return resultado


# =====================================================
# Tarea: Consulta por CDC (con backoff)
# =====================================================


@shared_task(
    bind=True,
    max_retries=6,
    default_retry_delay=60,  # no se usa directamente; hacemos nuestro propio backoff
)
def consultar_estado_task(self, invoice_id: int) -> Dict[str, Any]:
    """
    Consulta el estado de un documento ENVIADA.

    Mientras siga ENVIADA, se reprograma con backoff exponencial:
    1, 2, 4, 8, 16, 32 minutos (hasta max_retries).
    """
    try:
        invoice = Invoice.objects.get(pk=invoice_id)
    except Invoice.DoesNotExist:
        logger.error("consultar_estado_task: Invoice %s no existe.", invoice_id)
        return {"ok": False, "error": "InvoiceDoesNotExist"}

    try:
        resultado = consultar_estado_sync(invoice)
    except WorkflowError as exc:
        logger.error("consultar_estado_task: documento %s: %s", invoice_id, exc)
        return {"ok": False, "error": str(exc)}

    invoice.refresh_from_db()
    if invoice.estado == Invoice.Estado.ENVIADA and self.request.retries < self.max_retries:
        countdown = 60 * (2**self.request.retries)
        logger.info(
            "Documento %s sigue ENVIADA, reintento consultar_estado_task en %s segundos.",
            invoice_id,
            countdown,
        )
        raise self.retry(countdown=countdown)

    logger.info(
        "consultar_estado_task finalizado para invoice_id=%s, estado=%s",
        invoice_id,
        invoice.estado,
    )
    return resultado


# =====================================================
# Tarea: Consulta de lote (con backoff)
# =====================================================


@shared_task(
    bind=True,
    max_retries=6,
    default_retry_delay=60,
)
def consultar_lote_task(self, numero_lote: str) -> Dict[str, Any]:
    """
    Consulta un lote; reprograma mientras queden documentos sin resultado.
    """
    try:
        resultado = consultar_lote_sync(numero_lote)
    except WorkflowError as exc:
        logger.error("consultar_lote_task: lote %s: %s", numero_lote, exc)
        return {"ok": False, "error": str(exc)}

    pendientes = resultado.get("pendientes", 0)
    if pendientes and self.request.retries < self.max_retries:
        countdown = 60 * (2**self.request.retries)
        logger.info(
            "Lote %s con %s documentos pendientes, reintento en %s segundos.",
            numero_lote,
            pendientes,
            countdown,
        )
        raise self.retry(countdown=countdown)

    return resultado


# =====================================================
# Tarea periódica: reenvío de documentos sin respuesta
# =====================================================


@shared_task
def reintentar_envios_pendientes() -> Dict[str, Any]:
    """
    Reenvía (mismo XML firmado, mismo CDC) los documentos ENVIADA cuyo último
    intento terminó en falla de transporte y que no pertenecen a un lote.
    Pensada para celery beat.
    """
    limite = timezone.now() - timedelta(minutes=SIFEN_REENVIO_MINUTOS)
    pendientes = Invoice.objects.filter(
        estado=Invoice.Estado.ENVIADA,
        numero_lote="",
        codigo_respuesta__in=["", CODIGO_ERROR_COMUNICACION],
        updated_at__lte=limite,
    ).order_by("fecha_envio")

    reenviados = 0
    resueltos = 0
    for invoice in pendientes:
        try:
            resultado = reenviar_factura_sync(invoice)
        except WorkflowError as exc:
            logger.error("reintentar_envios_pendientes: documento %s: %s", invoice.pk, exc)
            continue
        reenviados += 1
        if not resultado.get("pendiente"):
            resueltos += 1

    logger.info(
        "reintentar_envios_pendientes: reenviados=%s resueltos=%s",
        reenviados,
        resueltos,
    )
    return {"ok": True, "reenviados": reenviados, "resueltos": resueltos}
