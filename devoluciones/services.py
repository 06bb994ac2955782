# devoluciones/services.py
# -*- coding: utf-8 -*-
"""
Motor de devoluciones.

Estados:
    SOLICITADA -> (EN_REVISION) -> APROBADA -> EN_PROCESO -> COMPLETADA
    RECHAZADA  solo desde SOLICITADA / EN_REVISION
    CANCELADA  desde cualquier estado no terminal

La aprobación corre en una sola transacción: procesamiento según tipo,
nota de crédito opcional y cierre. Cualquier error revierte todo y la
devolución queda en su estado anterior.
"""
from __future__ import annotations

import copy
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from bodega.models import MovementLine, Warehouse
from bodega.services import MovementApplyError, crear_ingreso, default_returns_warehouse
from devoluciones.models import DetalleDevolucion, Devolucion
from facturacion.exceptions import WorkflowError
from facturacion.models import Invoice, InvoiceLine, Secuencia
from facturacion.services.sifen.workflow import anular_factura
from facturacion.services.totales import calcular_linea, sumar_lineas
from facturacion.services.totales import recalcular_totales as recalcular_totales_invoice
from facturacion.tasks import emitir_factura_task
from pedidos.models import DetallePedido, Pedido, PedidoError

logger = logging.getLogger("devoluciones")

SECUENCIA_DEVOLUCION = "devolucion"

ESTADOS_APROBABLES = (Devolucion.Estado.SOLICITADA, Devolucion.Estado.EN_REVISION)
TIPOS_CON_FACTURA = (Devolucion.Tipo.PRODUCTO_FISICO, Devolucion.Tipo.CORRECCION_FACTURA)

# iMotEmi de la nota de crédito según el tipo de devolución
MOTIVO_NC_POR_TIPO = {
    Devolucion.Tipo.PRODUCTO_FISICO: 2,
    Devolucion.Tipo.CORRECCION_FACTURA: 1,
}


class ReturnError(Exception):
    """Violación de reglas de negocio de devoluciones."""


# ============================================================
# Helpers
# ============================================================


def _siguiente_numero() -> str:
    return f"DEV-{Secuencia.siguiente(SECUENCIA_DEVOLUCION):06d}"


def _bloquear(devolucion: Devolucion) -> Devolucion:
    Devolucion.objects.select_for_update().get(pk=devolucion.pk)
    devolucion.refresh_from_db()
    return devolucion


def _calcular(linea: Any) -> Any:
    try:
        return calcular_linea(linea)
    except WorkflowError as exc:
        raise ReturnError(str(exc)) from exc


def _totales_lineas(lineas: Iterable[DetalleDevolucion]) -> Dict[str, Decimal]:
    """
    Totales recalculados desde las líneas, sin tocar las instancias.
    """
    return sumar_lineas([_calcular(copy.copy(linea)) for linea in lineas])


def _preparar_linea(
    devolucion: Devolucion,
    datos: Dict[str, Any],
) -> DetalleDevolucion:
    """
    Arma un DetalleDevolucion (sin guardar) validando la línea de origen
    según el tipo de devolución.
    """
    cantidad = int(datos.get("cantidad") or 0)
    if cantidad <= 0:
        raise ReturnError("La cantidad a devolver debe ser positiva.")

    invoice_line: Optional[InvoiceLine] = datos.get("invoice_line")
    detalle_pedido: Optional[DetallePedido] = datos.get("detalle_pedido")
    producto = datos.get("producto")
    precio = datos.get("precio_unitario")
    tasa = datos.get("tasa_iva")

    if devolucion.tipo in TIPOS_CON_FACTURA:
        if invoice_line is not None:
            if invoice_line.invoice_id != devolucion.factura_id:
                raise ReturnError(
                    f"La línea {invoice_line.pk} no pertenece a la factura {devolucion.factura_id}."
                )
            if cantidad > invoice_line.cantidad:
                raise ReturnError(
                    f"No se pueden devolver {cantidad} unidades; la línea facturó {invoice_line.cantidad}."
                )
            producto = producto or invoice_line.producto
            precio = precio if precio is not None else invoice_line.precio_unitario
            tasa = tasa if tasa is not None else invoice_line.tasa_iva
            detalle_pedido = detalle_pedido or invoice_line.detalle_pedido
        detalle_pedido_origen = None
    else:
        if detalle_pedido is None:
            raise ReturnError("El ajuste de pedido requiere la línea de pedido de cada detalle.")
        if detalle_pedido.pedido_id != devolucion.pedido_id:
            raise ReturnError(
                f"La línea de pedido {detalle_pedido.pk} no pertenece al pedido {devolucion.pedido_id}."
            )
        if cantidad > detalle_pedido.cantidad_pendiente:
            raise ReturnError(
                f"No se puede devolver {cantidad} unidades. "
                f"Solo hay {detalle_pedido.cantidad_pendiente} pendientes de facturar."
            )
        detalle_pedido_origen = detalle_pedido
        producto = producto or detalle_pedido.producto
        precio = precio if precio is not None else detalle_pedido.precio_unitario

    if producto is None:
        raise ReturnError("Cada detalle de devolución requiere un producto.")
    if detalle_pedido_origen is not None and detalle_pedido_origen.producto_id != producto.pk:
        raise ReturnError("El producto no coincide con el de la línea de pedido.")

    linea = DetalleDevolucion(
        devolucion=devolucion,
        producto=producto,
        invoice_line=invoice_line,
        detalle_pedido=detalle_pedido,
        cantidad=cantidad,
        precio_unitario=Decimal(str(precio if precio is not None else producto.precio)),
        descuento=Decimal(str(datos.get("descuento") or "0")),
        tasa_iva=int(tasa if tasa is not None else producto.tasa_iva),
        estado_producto=datos.get("estado_producto") or DetalleDevolucion.EstadoProducto.BUENO,
        observaciones=datos.get("observaciones") or "",
    )
    return _calcular(linea)


# ============================================================
# Totales
# ============================================================


@transaction.atomic
def recalcular_totales(devolucion: Devolucion) -> Devolucion:
    """
    Recalcula líneas y cabecera de la devolución y las persiste.
    Solo mientras no fue aprobada.
    """
    if devolucion.estado not in ESTADOS_APROBABLES:
        raise ReturnError(
            f"La devolución {devolucion.numero} en estado {devolucion.estado} no admite cambios."
        )
    lineas = list(devolucion.detalles.all())
    for linea in lineas:
        _calcular(linea)
    if lineas:
        DetalleDevolucion.objects.bulk_update(lineas, ["descuento", "subtotal", "iva", "total"])

    totales = sumar_lineas(lineas)
    devolucion.subtotal = totales["subtotal"]
    devolucion.total_descuento = totales["total_descuento"]
    devolucion.total_iva = totales["total_iva"]
    devolucion.total = totales["total"]
    devolucion.save(update_fields=["subtotal", "total_descuento", "total_iva", "total", "updated_at"])
    return devolucion


def totales_vigentes(devolucion: Devolucion) -> bool:
    """
    True si los totales persistidos coinciden con el re-cálculo de sus líneas.
    """
    esperados = _totales_lineas(devolucion.detalles.all())
    return (
        devolucion.subtotal == esperados["subtotal"]
        and devolucion.total_descuento == esperados["total_descuento"]
        and devolucion.total_iva == esperados["total_iva"]
        and devolucion.total == esperados["total"]
    )


# ============================================================
# Creación y revisión
# ============================================================


def crear_devolucion(
    *,
    tipo: str,
    lineas: List[Dict[str, Any]],
    motivo: str,
    factura: Optional[Invoice] = None,
    pedido: Optional[Pedido] = None,
    cliente=None,
    generar_nota_credito: bool = False,
    observaciones: str = "",
    usuario=None,
) -> Devolucion:
    """
    Crea una devolución SOLICITADA con sus líneas y totales derivados.

    Cada item de `lineas` es un dict con: cantidad, y según el tipo
    invoice_line o detalle_pedido; opcionales producto, precio_unitario,
    tasa_iva, descuento, estado_producto, observaciones.
    """
    if tipo not in Devolucion.Tipo.values:
        raise ReturnError(f"Tipo de devolución inválido: {tipo}.")
    if not (motivo or "").strip():
        raise ReturnError("El motivo de la devolución es obligatorio.")
    if not lineas:
        raise ReturnError("La devolución debe tener al menos un detalle.")

    if tipo in TIPOS_CON_FACTURA:
        if factura is None:
            raise ReturnError(f"Devolución de tipo {tipo} requiere una factura.")
        if factura.es_nota_credito:
            raise ReturnError("No se puede devolver sobre una nota de crédito.")
        if factura.estado == Invoice.Estado.ANULADA:
            raise ReturnError("No se puede crear devolución de una factura anulada.")
        pedido = factura.pedido
        cliente = cliente or factura.cliente
    else:
        if pedido is None:
            raise ReturnError("Devolución de tipo AJUSTE_PEDIDO requiere un pedido.")
        if pedido.estado == Pedido.Estado.CANCELADO:
            raise ReturnError("No se puede crear devolución de un pedido cancelado.")
        if generar_nota_credito:
            raise ReturnError("Un ajuste de pedido no genera nota de crédito (no hay factura).")
        factura = None
        cliente = cliente or pedido.cliente

    if cliente is None:
        raise ReturnError("No se pudo determinar el cliente de la devolución.")

    if generar_nota_credito and not factura.cdc:
        raise ReturnError("La factura no tiene CDC; no se puede emitir una nota de crédito sobre ella.")

    with transaction.atomic():
        devolucion = Devolucion.objects.create(
            numero=_siguiente_numero(),
            tipo=tipo,
            factura=factura,
            pedido=pedido,
            cliente=cliente,
            solicitado_por=usuario,
            motivo=motivo.strip(),
            observaciones=observaciones or "",
            generar_nota_credito=generar_nota_credito,
        )
        detalles = [_preparar_linea(devolucion, datos) for datos in lineas]
        DetalleDevolucion.objects.bulk_create(detalles)
        recalcular_totales(devolucion)

    logger.info(
        "Devolución %s creada: tipo=%s lineas=%s total=%s",
        devolucion.numero,
        tipo,
        len(detalles),
        devolucion.total,
    )
    return devolucion


@transaction.atomic
def revisar_devolucion(devolucion: Devolucion, usuario=None) -> Devolucion:
    """
    SOLICITADA -> EN_REVISION.
    """
    _bloquear(devolucion)
    if devolucion.estado != Devolucion.Estado.SOLICITADA:
        raise ReturnError(
            f"No se puede revisar una devolución en estado {devolucion.estado}."
        )
    devolucion.estado = Devolucion.Estado.EN_REVISION
    devolucion.revisado_por = usuario
    devolucion.save(update_fields=["estado", "revisado_por", "updated_at"])
    logger.info("Devolución %s en revisión", devolucion.numero)
    return devolucion


@transaction.atomic
def rechazar_devolucion(devolucion: Devolucion, motivo: str, usuario=None) -> Devolucion:
    _bloquear(devolucion)
    if devolucion.estado not in ESTADOS_APROBABLES:
        raise ReturnError(
            f"No se puede rechazar una devolución en estado {devolucion.estado}."
        )
    devolucion.estado = Devolucion.Estado.RECHAZADA
    devolucion.revisado_por = usuario
    devolucion.agregar_observacion(f"RECHAZADA: {(motivo or '').strip()}")
    devolucion.save(update_fields=["estado", "revisado_por", "observaciones", "updated_at"])
    logger.info("Devolución %s rechazada", devolucion.numero)
    return devolucion


@transaction.atomic
def cancelar_devolucion(devolucion: Devolucion, motivo: str) -> Devolucion:
    _bloquear(devolucion)
    if devolucion.estado == Devolucion.Estado.COMPLETADA:
        raise ReturnError("No se puede cancelar una devolución completada.")
    if devolucion.es_terminal:
        raise ReturnError(f"La devolución ya está {devolucion.estado}.")
    devolucion.estado = Devolucion.Estado.CANCELADA
    devolucion.agregar_observacion(f"CANCELADA: {(motivo or '').strip()}")
    devolucion.save(update_fields=["estado", "observaciones", "updated_at"])
    logger.info("Devolución %s cancelada", devolucion.numero)
    return devolucion


# ============================================================
# Procesamiento por tipo
# ============================================================


def _revertir_facturado(detalle: DetalleDevolucion) -> None:
    if detalle.detalle_pedido_id is None:
        return
    linea_pedido = DetallePedido.objects.select_for_update().get(pk=detalle.detalle_pedido_id)
    try:
        linea_pedido.revertir_facturacion(detalle.cantidad)
    except PedidoError as exc:
        raise ReturnError(str(exc)) from exc
    linea_pedido.save(update_fields=["cantidad_facturada"])


def _procesar_producto_fisico(
    devolucion: Devolucion,
    detalles: List[DetalleDevolucion],
    warehouse: Optional[Warehouse],
    usuario,
) -> None:
    """
    Reingreso a bodega por cada línea (estado según la mercadería) y
    reversión del contador de unidades facturadas.
    """
    fisicos = [d for d in detalles if not d.producto.es_servicio]
    if fisicos:
        warehouse = warehouse or default_returns_warehouse()
        if warehouse is None:
            raise ReturnError("No hay bodega activa para registrar el reingreso.")

        try:
            movimiento = crear_ingreso(
                reference=devolucion.numero,
                warehouse=warehouse,
                user=usuario,
                note=f"Devolución {devolucion.numero}",
                lines=[
                    {
                        "product_id": d.producto_id,
                        "quantity": d.cantidad,
                        "stock_state": (
                            MovementLine.STATE_EN_DEPOSITO
                            if d.estado_producto == DetalleDevolucion.EstadoProducto.BUENO
                            else MovementLine.STATE_DANIADO
                        ),
                        "note": f"Devolución {devolucion.numero} - Estado: {d.estado_producto}",
                    }
                    for d in fisicos
                ],
            )
        except MovementApplyError as exc:
            raise ReturnError(f"No se pudo registrar el reingreso: {exc}") from exc

        for detalle, movement_line in zip(fisicos, movimiento.lines.order_by("id")):
            detalle.movement_line = movement_line
            detalle.save(update_fields=["movement_line"])

    for detalle in detalles:
        _revertir_facturado(detalle)


def _procesar_correccion_factura(devolucion: Devolucion, detalles: List[DetalleDevolucion], usuario) -> None:
    """
    Si cada línea devuelve la cantidad completa de su línea de factura, la
    factura se anula (la anulación libera los contadores del pedido); si no,
    solo se revierten los contadores de las líneas devueltas.
    """
    anulacion_total = all(
        d.invoice_line_id is not None and Decimal(d.cantidad) == d.invoice_line.cantidad
        for d in detalles
    )
    if anulacion_total:
        try:
            anular_factura(
                devolucion.factura,
                f"Corrección total por devolución {devolucion.numero}",
                usuario=usuario,
            )
        except WorkflowError as exc:
            raise ReturnError(f"No se pudo anular la factura original: {exc}") from exc
        logger.info("Factura %s anulada por devolución %s", devolucion.factura_id, devolucion.numero)
        return

    for detalle in detalles:
        _revertir_facturado(detalle)


def _procesar_ajuste_pedido(devolucion: Devolucion, detalles: List[DetalleDevolucion]) -> None:
    """
    Reduce cantidades del pedido sin superar lo pendiente de facturar; si no
    quedan líneas activas, el pedido se cancela.
    """
    for detalle in detalles:
        if detalle.detalle_pedido_id is None:
            raise ReturnError("Ajuste de pedido requiere referencia a la línea de pedido.")
        linea_pedido = DetallePedido.objects.select_for_update().get(pk=detalle.detalle_pedido_id)
        try:
            linea_pedido.reducir_cantidad(
                detalle.cantidad,
                motivo=f"Devolución completa - {devolucion.numero}",
            )
        except PedidoError as exc:
            raise ReturnError(str(exc)) from exc
        linea_pedido.save(
            update_fields=["cantidad", "sub_total", "is_active", "deletion_reason", "deleted_at"]
        )

    pedido = Pedido.objects.select_for_update().get(pk=devolucion.pedido_id)
    if not pedido.detalles.filter(is_active=True).exists():
        pedido.estado = Pedido.Estado.CANCELADO
        pedido.save(update_fields=["estado", "updated_at"])
        logger.info("Pedido %s cancelado por devolución %s", pedido.codigo_tracking, devolucion.numero)


# ============================================================
# Nota de crédito
# ============================================================


def generar_nota_credito(devolucion: Devolucion, usuario=None) -> Invoice:
    """
    Crea la nota de crédito BORRADOR de la devolución copiando sus líneas.

    El total se valida contra la factura original (incluyendo notas de
    crédito previas no anuladas) antes de crear el documento. La emisión
    sigue el mismo pipeline que una factura (emitir_factura_sync).
    """
    factura = devolucion.factura
    if factura is None:
        raise ReturnError("No se puede generar nota de crédito sin factura original.")
    if not factura.cdc:
        raise ReturnError(f"La factura {factura.pk} no tiene CDC para asociar la nota de crédito.")
    if Invoice.objects.filter(devolucion=devolucion).exists():
        raise ReturnError(f"La devolución {devolucion.numero} ya tiene nota de crédito.")

    detalles = list(devolucion.detalles.select_related("producto").order_by("id"))
    if not detalles:
        raise ReturnError("La devolución no tiene detalles.")

    total_nc = _totales_lineas(detalles)["total"]
    acreditado = (
        factura.notas_credito.exclude(estado=Invoice.Estado.ANULADA).aggregate(s=Sum("total"))["s"]
        or Decimal("0.00")
    )
    if total_nc + acreditado > factura.total:
        raise ReturnError(
            f"El total de la nota de crédito ({total_nc}) más lo ya acreditado ({acreditado}) "
            f"supera el total de la factura original ({factura.total})."
        )

    with transaction.atomic():
        nota = Invoice.objects.create(
            tipo_documento=Invoice.TipoDocumento.NOTA_CREDITO,
            estado=Invoice.Estado.BORRADOR,
            empresa=factura.empresa,
            establecimiento=factura.establecimiento,
            punto_emision=factura.punto_emision,
            cliente=devolucion.cliente,
            pedido=devolucion.pedido,
            factura_original=factura,
            devolucion=devolucion,
            motivo_emision=MOTIVO_NC_POR_TIPO.get(devolucion.tipo, 2),
            fecha_emision=timezone.now(),
            moneda=factura.moneda,
            ruc_receptor=factura.ruc_receptor,
            razon_social_receptor=factura.razon_social_receptor,
            direccion_receptor=factura.direccion_receptor,
            telefono_receptor=factura.telefono_receptor,
            email_receptor=factura.email_receptor,
            observaciones=f"Nota de crédito por devolución {devolucion.numero}",
            created_by=usuario,
        )
        for detalle in detalles:
            linea = InvoiceLine(
                invoice=nota,
                producto=detalle.producto,
                codigo=detalle.producto.codigo,
                descripcion=detalle.producto.descripcion,
                unidad_medida=detalle.producto.unidad_medida,
                cantidad=Decimal(detalle.cantidad),
                precio_unitario=detalle.precio_unitario,
                descuento=detalle.descuento,
                tasa_iva=detalle.tasa_iva,
            )
            calcular_linea(linea)
            linea.save()
        recalcular_totales_invoice(nota)

    logger.info(
        "Nota de crédito %s generada para devolución %s (total=%s)",
        nota.pk,
        devolucion.numero,
        nota.total,
    )
    return nota


# ============================================================
# Aprobación
# ============================================================


@transaction.atomic
def _aprobar(
    devolucion: Devolucion,
    usuario,
    warehouse: Optional[Warehouse],
    emitir: bool,
) -> Optional[Invoice]:
    _bloquear(devolucion)
    if devolucion.estado not in ESTADOS_APROBABLES:
        raise ReturnError(
            f"No se puede aprobar una devolución en estado {devolucion.estado}."
        )
    if not totales_vigentes(devolucion):
        raise ReturnError(
            f"Los totales de la devolución {devolucion.numero} están desactualizados; recalcule antes de aprobar."
        )

    devolucion.estado = Devolucion.Estado.APROBADA
    devolucion.aprobado_por = usuario
    devolucion.fecha_aprobacion = timezone.now()
    devolucion.save(update_fields=["estado", "aprobado_por", "fecha_aprobacion", "updated_at"])

    devolucion.estado = Devolucion.Estado.EN_PROCESO
    devolucion.save(update_fields=["estado", "updated_at"])

    detalles = list(
        devolucion.detalles.select_related("producto", "invoice_line").order_by("id")
    )
    if devolucion.tipo == Devolucion.Tipo.PRODUCTO_FISICO:
        _procesar_producto_fisico(devolucion, detalles, warehouse, usuario)
    elif devolucion.tipo == Devolucion.Tipo.CORRECCION_FACTURA:
        _procesar_correccion_factura(devolucion, detalles, usuario)
    else:
        _procesar_ajuste_pedido(devolucion, detalles)

    nota = None
    if devolucion.generar_nota_credito:
        nota = generar_nota_credito(devolucion, usuario=usuario)

    devolucion.estado = Devolucion.Estado.COMPLETADA
    devolucion.fecha_completada = timezone.now()
    devolucion.save(update_fields=["estado", "fecha_completada", "updated_at"])

    if nota is not None and emitir:
        transaction.on_commit(lambda: emitir_factura_task.delay(nota.pk))
    return nota


def aprobar_devolucion(
    devolucion: Devolucion,
    usuario=None,
    *,
    warehouse: Optional[Warehouse] = None,
    emitir: bool = False,
) -> Devolucion:
    """
    Aprueba y procesa la devolución en una sola transacción:
    APROBADA -> EN_PROCESO -> proceso por tipo -> nota de crédito -> COMPLETADA.

    Con emitir=True la nota de crédito se emite a SIFEN en background una vez
    confirmada la transacción.
    """
    try:
        nota = _aprobar(devolucion, usuario, warehouse, emitir)
    except (ReturnError, WorkflowError):
        # La transacción se revirtió: la instancia vuelve al estado persistido
        devolucion.refresh_from_db()
        raise

    logger.info(
        "Devolución %s aprobada y procesada (tipo=%s, nota_credito=%s)",
        devolucion.numero,
        devolucion.tipo,
        nota.pk if nota is not None else None,
    )
    return devolucion
