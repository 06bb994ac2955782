# facturacion/services/sifen/workflow.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import pytz
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from facturacion.exceptions import InvalidStateError, WorkflowError
from facturacion.models import Invoice, InvoiceLine, Pago, PuntoEmision
from facturacion.services.sifen.client import (
    CODIGO_ERROR_COMUNICACION,
    CODIGOS_EXITO,
    SifenClient,
    SifenResponse,
)
from facturacion.services.sifen.qr import generar_qr
from facturacion.services.sifen.signer import (
    CertificateError,
    SignatureError,
    firmar_xml,
    verificar_firma,
)
from facturacion.services.sifen.validator import validate_xml
from facturacion.services.sifen.xml_invoice_builder import XMLBuildError, build_invoice_xml
from facturacion.services.totales import calcular_linea, recalcular_totales
from facturacion.utils import generar_cdc, generar_codigo_seguridad
from pedidos.models import DetallePedido, Pedido

logger = logging.getLogger("facturacion.sifen")

SIFEN_TIMEZONE = getattr(settings, "SIFEN_TIMEZONE", "America/Asuncion")
SIFEN_LOTE_MAX = getattr(settings, "SIFEN_LOTE_MAX", 50)

ESTADOS_PRE_ENVIO = (Invoice.Estado.BORRADOR, Invoice.Estado.GENERADA)
ESTADOS_PAGABLES = (Invoice.Estado.APROBADA, Invoice.Estado.PAGADA_PARCIAL)
ESTADOS_NO_ANULABLES = (
    Invoice.Estado.PAGADA,
    Invoice.Estado.PAGADA_PARCIAL,
    Invoice.Estado.ANULADA,
)


def _mensaje(origen: str, detalle: str, **extra: Any) -> Dict[str, Any]:
    msg = {"origen": origen, "detalle": detalle, "fecha": timezone.now().isoformat()}
    msg.update(extra)
    return msg


def _update_invoice_status(
    invoice: Invoice,
    estado: str,
    mensajes: List[Dict[str, Any]] | None = None,
    extra_updates: Dict[str, Any] | None = None,
) -> Invoice:
    """
    Helper centralizado para actualizar estado y mensajes de un documento.

    - Concatena mensajes nuevos con los previos en .mensajes_sifen.
    - Actualiza campos extra según extra_updates.
    - Siempre actualiza updated_at.
    """
    if mensajes is None:
        mensajes = []
    if extra_updates is None:
        extra_updates = {}

    mensajes_existentes = invoice.mensajes_sifen or []
    if not isinstance(mensajes_existentes, list):
        mensajes_existentes = [mensajes_existentes]

    invoice.mensajes_sifen = mensajes_existentes + mensajes
    invoice.estado = estado

    for field, value in extra_updates.items():
        setattr(invoice, field, value)

    invoice.updated_at = timezone.now()
    invoice.save(
        update_fields=["estado", "mensajes_sifen", "updated_at", *extra_updates.keys()]
    )

    logger.info(
        "Documento %s actualizado a estado=%s (mensajes+=%s)",
        invoice.pk,
        invoice.estado,
        len(mensajes),
    )
    return invoice


def _registrar_error(invoice: Invoice, origen: str, exc: Exception) -> None:
    """
    Deja constancia del error en mensajes_sifen sin cambiar el estado.
    Se llama fuera de la transacción que falló.
    """
    invoice.refresh_from_db()
    _update_invoice_status(
        invoice,
        invoice.estado,
        [_mensaje(origen, str(exc), error=exc.__class__.__name__)],
    )


def _resultado(
    invoice: Invoice,
    ok: bool,
    mensajes: List[Any],
    codigo: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    data = {
        "ok": ok,
        "estado": invoice.estado,
        "codigo": codigo,
        "mensajes": mensajes,
    }
    data.update(extra)
    return data


def _bloquear(invoice: Invoice) -> Invoice:
    """
    Toma el lock de fila (dentro de transaction.atomic) y refresca la instancia.
    """
    Invoice.objects.select_for_update().only("pk").get(pk=invoice.pk)
    invoice.refresh_from_db()
    return invoice


def _fecha_cdc(invoice: Invoice) -> date:
    fecha = invoice.fecha_emision
    if timezone.is_aware(fecha):
        fecha = fecha.astimezone(pytz.timezone(SIFEN_TIMEZONE))
    return fecha.date()


def _asignar_numeracion(invoice: Invoice) -> None:
    """
    Reserva el número (dNumDoc) y asigna el CDC. El CDC se calcula una única vez:
    si el documento ya lo tiene, no se toca.
    """
    updates: List[str] = []

    if not invoice.secuencial:
        campo = "secuencial_nota_credito" if invoice.es_nota_credito else "secuencial_factura"
        invoice.secuencial = PuntoEmision.reservar_secuencial(invoice.punto_emision_id, campo)
        updates.append("secuencial")

    if not invoice.cdc:
        empresa = invoice.empresa
        codigo_seguridad = generar_codigo_seguridad()
        invoice.codigo_seguridad = codigo_seguridad
        invoice.cdc = generar_cdc(
            ruc=empresa.ruc,
            establecimiento=invoice.establecimiento.codigo,
            punto_expedicion=invoice.punto_emision.codigo,
            tipo_documento=invoice.tipo_documento_cdc,
            numero=invoice.secuencial,
            fecha_emision=_fecha_cdc(invoice),
            codigo_seguridad=codigo_seguridad,
            tipo_contribuyente=empresa.tipo_contribuyente,
        )
        updates += ["codigo_seguridad", "cdc"]
        logger.info("CDC asignado a documento %s: %s", invoice.pk, invoice.cdc)

    if updates:
        invoice.save(update_fields=updates + ["updated_at"])


# ============================================================
# Generación del DE
# ============================================================


def generar_documento(invoice: Invoice) -> Dict[str, Any]:
    """
    BORRADOR/GENERADA -> GENERADA.

    Recalcula totales, asigna número y CDC (solo la primera vez) y construye el
    XML sin firma. Lanza XMLBuildError si faltan datos obligatorios; en ese caso
    no queda ningún cambio persistido salvo el mensaje de error.
    """
    logger.info("Generando DE para documento id=%s", invoice.pk)
    try:
        with transaction.atomic():
            _bloquear(invoice)
            if invoice.estado not in ESTADOS_PRE_ENVIO:
                raise InvalidStateError(
                    f"El documento {invoice.pk} está en estado {invoice.estado}; "
                    "solo se genera el XML en BORRADOR o GENERADA.",
                    estado=invoice.estado,
                )

            recalcular_totales(invoice)
            _asignar_numeracion(invoice)
            xml = build_invoice_xml(invoice)

            errores_xsd = validate_xml(xml)
            if errores_xsd:
                raise XMLBuildError("Errores de validación XSD: " + "; ".join(errores_xsd))

            msg = _mensaje("XML_BUILDER", "XML del documento generado.", cdc=invoice.cdc)
            _update_invoice_status(
                invoice,
                Invoice.Estado.GENERADA,
                [msg],
                {"xml_generado": xml, "xml_firmado": None},
            )
    except XMLBuildError as exc:
        logger.error("Error construyendo XML del documento %s: %s", invoice.pk, exc)
        _registrar_error(invoice, "XML_BUILDER", exc)
        raise

    return _resultado(invoice, True, [msg], cdc=invoice.cdc)


def regenerar_xml(invoice: Invoice) -> Dict[str, Any]:
    """
    Reconstruye el XML de un documento aún no enviado. Conserva número y CDC.
    """
    if invoice.estado not in ESTADOS_PRE_ENVIO:
        raise InvalidStateError(
            f"No se puede regenerar el XML del documento {invoice.pk} en estado {invoice.estado}.",
            estado=invoice.estado,
        )
    return generar_documento(invoice)


def _firmar(invoice: Invoice) -> str:
    """
    Firma el XML generado y verifica la firma resultante antes de enviarla.
    """
    try:
        xml_firmado = firmar_xml(invoice.empresa, invoice.xml_generado).decode("utf-8")
        verificacion = verificar_firma(xml_firmado)
        if not verificacion.ok:
            raise SignatureError(f"La firma generada no verifica: {verificacion.motivo}")
    except (CertificateError, SignatureError) as exc:
        logger.error("Error de firma en documento %s: %s", invoice.pk, exc)
        _registrar_error(invoice, "FIRMA", exc)
        raise
    return xml_firmado


def _marcar_enviada(invoice: Invoice, xml_firmado: str) -> bool:
    """
    Transición condicional GENERADA -> ENVIADA en una sola sentencia UPDATE.
    El número de filas afectadas decide quién envía: a lo sumo un envío por CDC.
    """
    now = timezone.now()
    actualizados = Invoice.objects.filter(
        pk=invoice.pk,
        estado__in=ESTADOS_PRE_ENVIO,
    ).update(
        estado=Invoice.Estado.ENVIADA,
        xml_firmado=xml_firmado,
        fecha_envio=now,
        updated_at=now,
    )
    invoice.refresh_from_db()
    return actualizados == 1


# ============================================================
# Envío / respuesta
# ============================================================


def _es_aprobacion(respuesta: Any) -> bool:
    estado = (getattr(respuesta, "estado", None) or "").strip().lower()
    if estado:
        return estado.startswith("aprob")
    return respuesta.codigo in CODIGOS_EXITO


def aplicar_respuesta(invoice: Invoice, respuesta: Any) -> Dict[str, Any]:
    """
    Aplica una respuesta de SIFEN (recepción, consulta o resultado de lote):

    - ENVIADA -> APROBADA si el código es de éxito o dEstRes es "Aprobado";
      guarda protocolo y genera el QR.
    - ENVIADA -> RECHAZADA en otro caso; código y mensaje se guardan tal cual.
    - Falla de transporte: el documento queda ENVIADA.
    - Si la respuesta ya fue aplicada (documento fuera de ENVIADA), no hace nada.
    """
    if getattr(respuesta, "transporte_fallido", False):
        msg = _mensaje(
            "SIFEN_TRANSPORTE",
            respuesta.mensaje or "Sin respuesta de SIFEN.",
            codigo=respuesta.codigo,
        )
        if invoice.estado == Invoice.Estado.ENVIADA:
            _update_invoice_status(
                invoice,
                invoice.estado,
                [msg],
                {"codigo_respuesta": CODIGO_ERROR_COMUNICACION},
            )
        return _resultado(invoice, False, [msg], respuesta.codigo, pendiente=True)

    with transaction.atomic():
        _bloquear(invoice)

        if invoice.estado != Invoice.Estado.ENVIADA:
            logger.info(
                "Respuesta SIFEN ignorada para documento %s (estado=%s, ya aplicada)",
                invoice.pk,
                invoice.estado,
            )
            return _resultado(
                invoice,
                invoice.esta_aprobada,
                [],
                invoice.codigo_respuesta or None,
                ya_aplicada=True,
            )

        comunes = {
            "codigo_respuesta": respuesta.codigo or "",
            "mensaje_respuesta": respuesta.mensaje or "",
            "respuesta_raw": respuesta.raw or "",
        }

        if _es_aprobacion(respuesta):
            qr_url, qr_imagen = generar_qr(invoice)
            msg = _mensaje(
                "SIFEN",
                respuesta.mensaje or "Documento aprobado.",
                codigo=respuesta.codigo,
                protocolo=respuesta.protocolo,
            )
            _update_invoice_status(
                invoice,
                Invoice.Estado.APROBADA,
                [msg],
                {
                    **comunes,
                    "protocolo_autorizacion": respuesta.protocolo or "",
                    "fecha_aprobacion": timezone.now(),
                    "qr_url": qr_url,
                    "qr_imagen": qr_imagen,
                },
            )
            return _resultado(invoice, True, [msg], respuesta.codigo)

        msg = _mensaje(
            "SIFEN",
            respuesta.mensaje or "Documento rechazado.",
            codigo=respuesta.codigo,
            estado_sifen=getattr(respuesta, "estado", None),
        )
        _update_invoice_status(invoice, Invoice.Estado.RECHAZADA, [msg], comunes)
        logger.warning(
            "Documento %s rechazado por SIFEN: %s %s",
            invoice.pk,
            respuesta.codigo,
            respuesta.mensaje,
        )
        return _resultado(invoice, False, [msg], respuesta.codigo)


def _enviar(invoice: Invoice, client: Optional[SifenClient]) -> Dict[str, Any]:
    client = client or SifenClient(invoice.empresa)
    respuesta: SifenResponse = client.enviar_documento(invoice.xml_firmado)
    return aplicar_respuesta(invoice, respuesta)


def emitir_factura_sync(invoice: Invoice, client: Optional[SifenClient] = None) -> Dict[str, Any]:
    """
    Orquesta la emisión síncrona de un documento (factura o nota de crédito).

    Flujo:
    - Generar XML si aún no existe (asigna CDC).
    - Firmar y auto-verificar la firma.
    - Transición condicional a ENVIADA (un único emisor gana).
    - Enviar a SIFEN (recibe) y aplicar la respuesta.

    Ante una falla de transporte el documento queda ENVIADA con el mismo XML
    firmado; se reintenta con reenviar_factura_sync o se consulta luego.
    """
    logger.info("Iniciando emisión síncrona de documento id=%s", invoice.pk)

    if invoice.estado not in ESTADOS_PRE_ENVIO:
        raise InvalidStateError(
            f"El documento {invoice.pk} está en estado {invoice.estado} y no puede emitirse.",
            estado=invoice.estado,
        )

    if invoice.estado == Invoice.Estado.BORRADOR or not invoice.xml_generado:
        generar_documento(invoice)

    xml_firmado = _firmar(invoice)

    if not _marcar_enviada(invoice, xml_firmado):
        raise InvalidStateError(
            f"El documento {invoice.pk} ya fue enviado por otro proceso (estado={invoice.estado}).",
            estado=invoice.estado,
        )

    return _enviar(invoice, client)


def reenviar_factura_sync(invoice: Invoice, client: Optional[SifenClient] = None) -> Dict[str, Any]:
    """
    Reintento de envío de un documento ENVIADA con el mismo XML firmado (mismo CDC).
    Nunca regenera ni vuelve a firmar.
    """
    if invoice.estado != Invoice.Estado.ENVIADA:
        raise InvalidStateError(
            f"Solo se reenvían documentos en estado ENVIADA (documento {invoice.pk}: {invoice.estado}).",
            estado=invoice.estado,
        )
    if not invoice.xml_firmado:
        raise WorkflowError(f"El documento {invoice.pk} no tiene XML firmado para reenviar.")

    logger.info("Reenviando documento %s cdc=%s", invoice.pk, invoice.cdc)
    return _enviar(invoice, client)


def enviar_lote_sync(
    invoices: Iterable[Invoice],
    client: Optional[SifenClient] = None,
) -> Dict[str, Any]:
    """
    Firma y envía un lote de documentos de una misma empresa (recibe-lote).

    Retorna apenas SIFEN acepta el lote; el resultado de cada documento se
    obtiene luego con consultar_lote_sync (tarea celery consultar_lote_task).
    """
    candidatos = [inv for inv in invoices if inv.estado in ESTADOS_PRE_ENVIO]
    if not candidatos:
        raise WorkflowError("No hay documentos en BORRADOR o GENERADA para enviar en lote.")
    if len(candidatos) > SIFEN_LOTE_MAX:
        raise WorkflowError(f"Un lote admite como máximo {SIFEN_LOTE_MAX} documentos.")
    if len({inv.empresa_id for inv in candidatos}) > 1:
        raise WorkflowError("Todos los documentos de un lote deben ser de la misma empresa.")

    enviados: List[Invoice] = []
    for invoice in candidatos:
        if invoice.estado == Invoice.Estado.BORRADOR or not invoice.xml_generado:
            generar_documento(invoice)
        xml_firmado = _firmar(invoice)
        if _marcar_enviada(invoice, xml_firmado):
            enviados.append(invoice)
        else:
            logger.warning("Documento %s omitido del lote: ya enviado por otro proceso", invoice.pk)

    if not enviados:
        return {"ok": False, "numero_lote": None, "codigo": None, "mensajes": [], "facturas": []}

    client = client or SifenClient(enviados[0].empresa)
    respuesta = client.enviar_lote([inv.xml_firmado for inv in enviados])
    ids = [inv.pk for inv in enviados]

    if respuesta.transporte_fallido:
        for invoice in enviados:
            aplicar_respuesta(invoice, respuesta)
        return {
            "ok": False,
            "numero_lote": None,
            "codigo": respuesta.codigo,
            "mensajes": [respuesta.mensaje],
            "facturas": ids,
        }

    if not respuesta.ok or not respuesta.numero_lote:
        # Lote no aceptado: ningún documento fue recibido
        for invoice in enviados:
            aplicar_respuesta(
                invoice,
                SifenResponse(
                    ok=False,
                    codigo=respuesta.codigo,
                    mensaje=respuesta.mensaje,
                    raw=respuesta.raw,
                ),
            )
        return {
            "ok": False,
            "numero_lote": respuesta.numero_lote,
            "codigo": respuesta.codigo,
            "mensajes": [respuesta.mensaje],
            "facturas": ids,
        }

    msg = _mensaje("SIFEN_LOTE", respuesta.mensaje or "Lote recibido.", numero_lote=respuesta.numero_lote)
    for invoice in enviados:
        _update_invoice_status(
            invoice,
            invoice.estado,
            [msg],
            {"numero_lote": respuesta.numero_lote},
        )

    logger.info("Lote %s enviado con %s documentos", respuesta.numero_lote, len(enviados))
    return {
        "ok": True,
        "numero_lote": respuesta.numero_lote,
        "codigo": respuesta.codigo,
        "mensajes": [msg],
        "facturas": ids,
    }


# ============================================================
# Consultas (polling)
# ============================================================


def consultar_estado_sync(invoice: Invoice, client: Optional[SifenClient] = None) -> Dict[str, Any]:
    """
    Consulta un DE por CDC y aplica el resultado si SIFEN ya lo procesó.

    Mientras SIFEN no informe un estado (dEstRes) ni un código de éxito, el
    documento sigue ENVIADA (pendiente=True).
    """
    if not invoice.cdc:
        raise WorkflowError(f"El documento {invoice.pk} no tiene CDC para consultar.")

    if invoice.estado != Invoice.Estado.ENVIADA:
        return _resultado(
            invoice,
            invoice.esta_aprobada,
            [],
            invoice.codigo_respuesta or None,
            ya_aplicada=True,
        )

    client = client or SifenClient(invoice.empresa)
    respuesta = client.consultar_documento(invoice.cdc)

    if respuesta.transporte_fallido:
        return aplicar_respuesta(invoice, respuesta)

    if not respuesta.estado and respuesta.codigo not in CODIGOS_EXITO:
        msg = _mensaje(
            "SIFEN_CONSULTA",
            respuesta.mensaje or "Documento aún no procesado.",
            codigo=respuesta.codigo,
        )
        _update_invoice_status(invoice, invoice.estado, [msg])
        return _resultado(invoice, False, [msg], respuesta.codigo, pendiente=True)

    return aplicar_respuesta(invoice, respuesta)


def consultar_lote_sync(numero_lote: str, client: Optional[SifenClient] = None) -> Dict[str, Any]:
    """
    Consulta el resultado de un lote y aplica la respuesta de cada documento
    ya procesado. Los documentos sin resultado siguen ENVIADA.
    """
    invoices = list(
        Invoice.objects.filter(numero_lote=numero_lote).select_related("empresa").order_by("id")
    )
    if not invoices:
        raise WorkflowError(f"No hay documentos asociados al lote {numero_lote}.")

    client = client or SifenClient(invoices[0].empresa)
    respuesta = client.consultar_lote(numero_lote)

    if respuesta.transporte_fallido:
        return {
            "ok": False,
            "numero_lote": numero_lote,
            "codigo": CODIGO_ERROR_COMUNICACION,
            "mensajes": [respuesta.mensaje],
            "procesados": 0,
            "pendientes": len(invoices),
            "resultados": [],
        }

    por_cdc = {doc.cdc: doc for doc in respuesta.documentos if doc.cdc}
    resultados = []
    pendientes = 0
    for invoice in invoices:
        doc = por_cdc.get(invoice.cdc)
        if doc is None:
            if invoice.estado == Invoice.Estado.ENVIADA:
                pendientes += 1
            continue
        resultados.append({"factura": invoice.pk, **aplicar_respuesta(invoice, doc)})

    logger.info(
        "Lote %s consultado: codigo=%s procesados=%s pendientes=%s",
        numero_lote,
        respuesta.codigo,
        len(resultados),
        pendientes,
    )
    return {
        "ok": True,
        "numero_lote": numero_lote,
        "codigo": respuesta.codigo,
        "mensajes": [respuesta.mensaje] if respuesta.mensaje else [],
        "procesados": len(resultados),
        "pendientes": pendientes,
        "resultados": resultados,
    }


# ============================================================
# Pagos, anulación y reemisión
# ============================================================


def registrar_pago(
    invoice: Invoice,
    monto: Decimal | int | str,
    metodo: str = Pago.Metodo.EFECTIVO,
    referencia: str = "",
    usuario=None,
) -> Pago:
    """
    Registra un pago sobre una factura aprobada:
    APROBADA/PAGADA_PARCIAL -> PAGADA_PARCIAL o PAGADA según el saldo.
    """
    monto = Decimal(str(monto))
    if monto <= 0:
        raise WorkflowError("El monto del pago debe ser mayor a 0.")

    with transaction.atomic():
        _bloquear(invoice)
        if invoice.es_nota_credito:
            raise WorkflowError("No se registran pagos sobre notas de crédito.")
        if invoice.estado not in ESTADOS_PAGABLES:
            raise InvalidStateError(
                f"No se puede registrar un pago sobre el documento {invoice.pk} en estado {invoice.estado}.",
                estado=invoice.estado,
            )
        if monto > invoice.saldo:
            raise WorkflowError(
                f"El pago ({monto}) supera el saldo pendiente ({invoice.saldo})."
            )

        pago = Pago.objects.create(
            invoice=invoice,
            monto=monto,
            metodo=metodo,
            referencia=referencia or "",
            registrado_por=usuario,
        )

        monto_pagado = invoice.monto_pagado + monto
        saldo = invoice.total - monto_pagado
        estado = Invoice.Estado.PAGADA if saldo <= 0 else Invoice.Estado.PAGADA_PARCIAL
        msg = _mensaje("PAGO", f"Pago registrado por {monto} ({metodo}).", pago_id=pago.pk)
        _update_invoice_status(
            invoice,
            estado,
            [msg],
            {"monto_pagado": monto_pagado, "saldo": saldo},
        )

    logger.info("Pago %s registrado en documento %s; saldo=%s", pago.pk, invoice.pk, invoice.saldo)
    return pago


def anular_factura(invoice: Invoice, motivo: str, usuario=None) -> Dict[str, Any]:
    """
    Anula localmente un documento que no esté pagado ni anulado.

    Si el documento tiene CDC y fue aprobado (o está en vuelo), queda marcado
    requiere_cancelacion_sifen para su cancelación en SIFEN.
    Las unidades facturadas de las líneas de pedido se liberan.
    """
    if not (motivo or "").strip():
        raise WorkflowError("El motivo de anulación es obligatorio.")

    with transaction.atomic():
        _bloquear(invoice)
        if invoice.estado in ESTADOS_NO_ANULABLES:
            raise InvalidStateError(
                f"El documento {invoice.pk} en estado {invoice.estado} no puede anularse.",
                estado=invoice.estado,
            )

        requiere_cancelacion = bool(invoice.cdc) and invoice.estado in (
            Invoice.Estado.APROBADA,
            Invoice.Estado.ENVIADA,
        )

        # Un rechazado ya reemitido cedió sus unidades al documento nuevo
        reemitido = Invoice.objects.filter(reemplaza=invoice).exists()
        if not invoice.es_nota_credito and not reemitido:
            lineas = invoice.lines.select_related("detalle_pedido").filter(detalle_pedido__isnull=False)
            for linea in lineas:
                detalle = DetallePedido.objects.select_for_update().get(pk=linea.detalle_pedido_id)
                cantidad = min(int(linea.cantidad), detalle.cantidad_facturada)
                if cantidad > 0:
                    detalle.revertir_facturacion(cantidad)
                    detalle.save(update_fields=["cantidad_facturada"])
            if invoice.pedido_id:
                _actualizar_estado_pedido(invoice.pedido)

        detalle_msg = f"Documento anulado: {motivo.strip()}"
        if usuario is not None:
            detalle_msg += f" (por {usuario})"
        msg = _mensaje("ANULACION", detalle_msg, requiere_cancelacion_sifen=requiere_cancelacion)
        _update_invoice_status(
            invoice,
            Invoice.Estado.ANULADA,
            [msg],
            {
                "anulada_at": timezone.now(),
                "motivo_anulacion": motivo.strip(),
                "requiere_cancelacion_sifen": requiere_cancelacion,
            },
        )

    if requiere_cancelacion:
        logger.warning(
            "Documento %s (cdc=%s) anulado localmente; requiere cancelación en SIFEN.",
            invoice.pk,
            invoice.cdc,
        )
    return _resultado(invoice, True, [msg], requiere_cancelacion_sifen=requiere_cancelacion)


def reemitir_rechazada(invoice: Invoice, usuario=None) -> Invoice:
    """
    RECHAZADA -> nuevo documento BORRADOR con las mismas líneas, para corregir y
    emitir con número y CDC nuevos. El CDC rechazado nunca se reutiliza.

    Las unidades facturadas del pedido pasan al nuevo documento sin tocar los
    contadores; anular luego el rechazado no las libera.
    """
    with transaction.atomic():
        _bloquear(invoice)
        if invoice.estado != Invoice.Estado.RECHAZADA:
            raise InvalidStateError(
                f"Solo se reemiten documentos RECHAZADA (documento {invoice.pk}: {invoice.estado}).",
                estado=invoice.estado,
            )
        if invoice.es_nota_credito:
            raise WorkflowError(
                "Una nota de crédito rechazada se reemite desde su devolución, no como copia."
            )
        if Invoice.objects.filter(reemplaza=invoice).exists():
            raise WorkflowError(f"El documento {invoice.pk} ya fue reemitido.")

        nuevo = Invoice.objects.create(
            tipo_documento=invoice.tipo_documento,
            empresa=invoice.empresa,
            establecimiento=invoice.establecimiento,
            punto_emision=invoice.punto_emision,
            cliente=invoice.cliente,
            pedido=invoice.pedido,
            reemplaza=invoice,
            fecha_emision=timezone.now(),
            moneda=invoice.moneda,
            ruc_receptor=invoice.ruc_receptor,
            razon_social_receptor=invoice.razon_social_receptor,
            direccion_receptor=invoice.direccion_receptor,
            telefono_receptor=invoice.telefono_receptor,
            email_receptor=invoice.email_receptor,
            observaciones=invoice.observaciones,
            created_by=usuario,
        )
        for linea in invoice.lines.all():
            copia = InvoiceLine(
                invoice=nuevo,
                producto_id=linea.producto_id,
                detalle_pedido_id=linea.detalle_pedido_id,
                codigo=linea.codigo,
                descripcion=linea.descripcion,
                unidad_medida=linea.unidad_medida,
                cantidad=linea.cantidad,
                precio_unitario=linea.precio_unitario,
                descuento=linea.descuento,
                tasa_iva=linea.tasa_iva,
            )
            calcular_linea(copia)
            copia.save()
        recalcular_totales(nuevo)

        msg = _mensaje("REEMISION", f"Reemplazado por el documento {nuevo.pk}.", reemplazo_id=nuevo.pk)
        _update_invoice_status(invoice, invoice.estado, [msg])

    logger.info(
        "Documento rechazado %s (cdc=%s) reemitido como %s",
        invoice.pk,
        invoice.cdc,
        nuevo.pk,
    )
    return nuevo


# ============================================================
# Conversión de pedido y auditoría
# ============================================================


def _actualizar_estado_pedido(pedido: Pedido) -> None:
    """
    FACTURADO cuando ninguna línea activa tiene unidades pendientes; si no, EN_PROCESO.
    No toca pedidos cancelados.
    """
    if pedido.estado == Pedido.Estado.CANCELADO:
        return
    pendientes = any(
        d.cantidad_pendiente > 0 for d in DetallePedido.objects.filter(pedido=pedido, is_active=True)
    )
    estado = Pedido.Estado.EN_PROCESO if pendientes else Pedido.Estado.FACTURADO
    if pedido.estado != estado:
        pedido.estado = estado
        pedido.save(update_fields=["estado", "updated_at"])


def _cantidades_a_facturar(
    pedido: Pedido,
    detalles: List[DetallePedido],
    items: Optional[Iterable[Dict[str, Any]]],
) -> List[tuple]:
    """
    (detalle, cantidad, precio_unitario) por línea a facturar.

    Sin items se factura todo lo pendiente. Con items, cada uno indica
    detalle_pedido (id), cantidad y opcionalmente precio_unitario.
    """
    if items is None:
        return [(d, d.cantidad_pendiente, d.precio_unitario) for d in detalles if d.cantidad_pendiente > 0]

    por_id = {d.pk: d for d in detalles}
    resultado = []
    vistos = set()
    for item in items:
        detalle_id = getattr(item["detalle_pedido"], "pk", item["detalle_pedido"])
        detalle = por_id.get(detalle_id)
        if detalle is None:
            raise WorkflowError(
                f"La línea {detalle_id} no pertenece al pedido {pedido.codigo_tracking} o está eliminada."
            )
        if detalle_id in vistos:
            raise WorkflowError(f"La línea {detalle_id} se indicó más de una vez.")
        vistos.add(detalle_id)

        cantidad = int(item["cantidad"])
        if cantidad <= 0:
            raise WorkflowError("La cantidad a facturar debe ser mayor a 0.")
        if cantidad > detalle.cantidad_pendiente:
            raise WorkflowError(
                f"Cantidad a facturar ({cantidad}) excede la cantidad pendiente "
                f"({detalle.cantidad_pendiente}) de '{detalle.producto.descripcion}'."
            )
        precio = item.get("precio_unitario")
        resultado.append((detalle, cantidad, detalle.precio_unitario if precio is None else Decimal(str(precio))))

    if not resultado:
        raise WorkflowError("Indique al menos una línea del pedido a facturar.")
    return resultado


def crear_factura_desde_pedido(
    pedido: Pedido,
    punto_emision: PuntoEmision,
    usuario=None,
    fecha_emision=None,
    items: Optional[Iterable[Dict[str, Any]]] = None,
) -> Invoice:
    """
    Convierte cantidades pendientes de un pedido en una factura BORRADOR y
    marca esas unidades como facturadas en cada línea del pedido.

    Sin `items` se factura todo lo pendiente. Con `items` la factura es
    parcial: solo las líneas y cantidades indicadas, nunca por encima de lo
    pendiente. El pedido queda FACTURADO al no quedar unidades pendientes.
    """
    if pedido.estado == Pedido.Estado.CANCELADO:
        raise WorkflowError(f"El pedido {pedido.codigo_tracking} está cancelado.")

    establecimiento = punto_emision.establecimiento
    empresa = establecimiento.empresa
    if not empresa.is_active:
        raise WorkflowError(f"La empresa {empresa.ruc} está inactiva y no puede emitir.")

    with transaction.atomic():
        detalles = list(
            DetallePedido.objects.select_for_update()
            .select_related("producto")
            .filter(pedido=pedido, is_active=True)
            .order_by("id")
        )
        if not any(d.cantidad_pendiente > 0 for d in detalles):
            raise WorkflowError(
                f"El pedido {pedido.codigo_tracking} no tiene cantidades pendientes de facturar."
            )
        a_facturar = _cantidades_a_facturar(pedido, detalles, items)

        cliente = pedido.cliente
        invoice = Invoice.objects.create(
            tipo_documento=Invoice.TipoDocumento.FACTURA,
            empresa=empresa,
            establecimiento=establecimiento,
            punto_emision=punto_emision,
            cliente=cliente,
            pedido=pedido,
            fecha_emision=fecha_emision or timezone.now(),
            ruc_receptor=cliente.ruc,
            razon_social_receptor=cliente.razon_social,
            direccion_receptor=cliente.direccion,
            telefono_receptor=cliente.telefono,
            email_receptor=cliente.email,
            created_by=usuario,
        )

        for detalle, cantidad, precio_unitario in a_facturar:
            producto = detalle.producto
            linea = InvoiceLine(
                invoice=invoice,
                producto=producto,
                detalle_pedido=detalle,
                codigo=producto.codigo,
                descripcion=producto.descripcion,
                unidad_medida=producto.unidad_medida,
                cantidad=Decimal(cantidad),
                precio_unitario=precio_unitario,
                tasa_iva=producto.tasa_iva,
            )
            calcular_linea(linea)
            linea.save()

            detalle.facturar(cantidad)
            detalle.save(update_fields=["cantidad_facturada"])

        recalcular_totales(invoice)
        _actualizar_estado_pedido(pedido)

    logger.info(
        "Factura %s creada desde pedido %s (%s líneas, total=%s, parcial=%s)",
        invoice.pk,
        pedido.codigo_tracking,
        len(a_facturar),
        invoice.total,
        items is not None,
    )
    return invoice


def validar_firma_factura(invoice: Invoice) -> Dict[str, Any]:
    """
    Auditoría: verifica la firma del XML firmado almacenado. No modifica el documento.
    """
    if not invoice.xml_firmado:
        raise WorkflowError(f"El documento {invoice.pk} no tiene XML firmado.")

    resultado = verificar_firma(invoice.xml_firmado)
    if not resultado.ok:
        logger.warning("Firma inválida en documento %s: %s", invoice.pk, resultado.motivo)
    return _resultado(
        invoice,
        resultado.ok,
        [resultado.motivo] if resultado.motivo else [],
        firma_valida=resultado.ok,
    )
