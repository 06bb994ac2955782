# facturacion/viewsets.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.db import transaction
from django.http import Http404
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from facturacion.exceptions import InvalidStateError, WorkflowError
from facturacion.filters import InvoiceFilter
from facturacion.models import Empresa, Establecimiento, Invoice, PuntoEmision
from facturacion.pagination import FacturacionPagination
from facturacion.serializers import (
    AnularSerializer,
    DesdePedidoSerializer,
    EmpresaSerializer,
    EstablecimientoSerializer,
    InvoiceLineSerializer,
    InvoiceSerializer,
    PagoSerializer,
    PuntoEmisionSerializer,
    RegistrarPagoSerializer,
)
from facturacion.services.sifen.signer import CertificateError, SignatureError
from facturacion.services.sifen.workflow import (
    anular_factura,
    consultar_estado_sync,
    crear_factura_desde_pedido,
    emitir_factura_sync,
    enviar_lote_sync,
    generar_documento,
    registrar_pago,
    reemitir_rechazada,
    reenviar_factura_sync,
    validar_firma_factura,
)
from facturacion.services.totales import agregar_linea
from facturacion.services.sifen.xml_invoice_builder import XMLBuildError
from facturacion.tasks import consultar_lote_task, emitir_factura_task
from pedidos.models import PedidoError

logger = logging.getLogger(__name__)

# Errores de datos / negocio que se devuelven como 400
ERRORES_CLIENTE = (WorkflowError, PedidoError, XMLBuildError, CertificateError, SignatureError)


def respuesta_error(exc: Exception) -> Response:
    """
    Traduce excepciones de dominio a respuestas HTTP:
    InvalidStateError -> 409, el resto de errores de negocio -> 400.
    """
    if isinstance(exc, InvalidStateError):
        return Response(
            {"detail": str(exc), "estado": exc.estado},
            status=status.HTTP_409_CONFLICT,
        )
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


def _textos(mensajes: List[Any]) -> List[str]:
    textos: List[str] = []
    for m in mensajes or []:
        if isinstance(m, dict):
            if m.get("detalle"):
                textos.append(str(m["detalle"]))
        elif m:
            textos.append(str(m))
    return textos


# =========================
# ViewSets de configuración (solo lectura)
# =========================


class EmpresaViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Empresa.objects.all().order_by("razon_social")
    serializer_class = EmpresaSerializer
    permission_classes = [IsAuthenticated]


class EstablecimientoViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = EstablecimientoSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = Establecimiento.objects.select_related("empresa").order_by("empresa__razon_social", "codigo")
        empresa_id = self.request.query_params.get("empresa")
        if empresa_id:
            qs = qs.filter(empresa_id=empresa_id)
        return qs


class PuntoEmisionViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = PuntoEmisionSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = PuntoEmision.objects.select_related("establecimiento__empresa").order_by(
            "establecimiento__empresa__razon_social",
            "establecimiento__codigo",
            "codigo",
        )
        establecimiento_id = self.request.query_params.get("establecimiento")
        if establecimiento_id:
            qs = qs.filter(establecimiento_id=establecimiento_id)
        return qs


# =========================
# ViewSet de documentos electrónicos
# =========================


class FacturaViewSet(
    mixins.CreateModelMixin,
    viewsets.ReadOnlyModelViewSet,
):
    """
    API de documentos electrónicos (facturas y notas de crédito).

    - list/retrieve: consulta con filtros.
    - create: crea una factura BORRADOR con líneas.
    - acciones:
      - generar         → asigna CDC y arma el XML (GENERADA)
      - emitir          → firma y envía a SIFEN (síncrono, o en background con async=true)
      - reenviar        → reintento del mismo XML firmado (ENVIADA)
      - consultar       → consulta por CDC
      - anular          → anulación local (flag de cancelación en SIFEN si corresponde)
      - pagos           → GET lista / POST registra un pago
      - verificar-firma → auditoría de la firma almacenada
      - lote            → envío de varios documentos en un lote
      - desde-pedido    → convierte un pedido (todo o parte de lo pendiente) en factura BORRADOR
      - reemitir        → copia un documento RECHAZADA en un BORRADOR nuevo (nuevo CDC)
      - lineas          → agrega una línea a un documento BORRADOR/GENERADA
    """

    serializer_class = InvoiceSerializer
    pagination_class = FacturacionPagination
    filterset_class = InvoiceFilter
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return (
            Invoice.objects.select_related(
                "empresa",
                "establecimiento",
                "punto_emision",
                "cliente",
            )
            .prefetch_related("lines", "pagos")
            .order_by("-fecha_emision", "-id")
        )

    def _get_invoice(self, pk: Optional[str]) -> Invoice:
        try:
            return self.get_queryset().get(pk=pk)
        except Invoice.DoesNotExist:
            raise Http404("Documento no encontrado.")

    def _respuesta_workflow(self, request, invoice: Invoice, resultado: Dict[str, Any]) -> Response:
        """
        Devuelve el documento recargado con el resultado del workflow en `_workflow`.
        """
        invoice.refresh_from_db()
        data = self.get_serializer(invoice, context={"request": request}).data
        data["_workflow"] = resultado

        if resultado.get("ok") or resultado.get("pendiente"):
            return Response(data, status=status.HTTP_200_OK)

        textos = _textos(resultado.get("mensajes"))
        data["detail"] = "SIFEN no aprobó el documento." + (
            " " + " | ".join(textos) if textos else ""
        )
        return Response(data, status=status.HTTP_400_BAD_REQUEST)

    # -------------------------
    # Acciones de workflow
    # -------------------------

    @action(detail=True, methods=["post"], url_path="generar")
    def generar(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        try:
            resultado = generar_documento(invoice)
        except ERRORES_CLIENTE as exc:
            logger.warning("No se pudo generar el documento %s: %s", invoice.pk, exc)
            return respuesta_error(exc)
        return self._respuesta_workflow(request, invoice, resultado)

    @action(detail=True, methods=["post"], url_path="emitir")
    def emitir(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)

        if str(request.data.get("async", "")).lower() in ("1", "true"):
            if invoice.estado not in (Invoice.Estado.BORRADOR, Invoice.Estado.GENERADA):
                return respuesta_error(
                    InvalidStateError(
                        f"El documento {invoice.pk} está en estado {invoice.estado} y no puede emitirse.",
                        estado=invoice.estado,
                    )
                )
            transaction.on_commit(lambda: emitir_factura_task.delay(invoice.pk))
            return Response(
                {"detail": "Emisión encolada.", "id": invoice.pk},
                status=status.HTTP_202_ACCEPTED,
            )

        try:
            resultado = emitir_factura_sync(invoice)
        except ERRORES_CLIENTE as exc:
            logger.warning("No se pudo emitir el documento %s: %s", invoice.pk, exc)
            return respuesta_error(exc)
        return self._respuesta_workflow(request, invoice, resultado)

    @action(detail=True, methods=["post"], url_path="reenviar")
    def reenviar(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        try:
            resultado = reenviar_factura_sync(invoice)
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)
        return self._respuesta_workflow(request, invoice, resultado)

    @action(detail=True, methods=["post"], url_path="consultar")
    def consultar(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        try:
            resultado = consultar_estado_sync(invoice)
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)
        return self._respuesta_workflow(request, invoice, resultado)

    @action(detail=True, methods=["post"], url_path="anular")
    def anular(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        entrada = AnularSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)

        usuario = request.user if request.user.is_authenticated else None
        try:
            resultado = anular_factura(invoice, entrada.validated_data["motivo"], usuario=usuario)
        except ERRORES_CLIENTE as exc:
            logger.warning("No se pudo anular el documento %s: %s", invoice.pk, exc)
            return respuesta_error(exc)
        return self._respuesta_workflow(request, invoice, resultado)

    @action(detail=True, methods=["get", "post"], url_path="pagos")
    def pagos(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)

        if request.method == "GET":
            return Response(PagoSerializer(invoice.pagos.all(), many=True).data)

        entrada = RegistrarPagoSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)
        usuario = request.user if request.user.is_authenticated else None
        try:
            pago = registrar_pago(
                invoice,
                entrada.validated_data["monto"],
                metodo=entrada.validated_data["metodo"],
                referencia=entrada.validated_data.get("referencia", ""),
                usuario=usuario,
            )
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)

        invoice.refresh_from_db()
        return Response(
            {
                "pago": PagoSerializer(pago).data,
                "estado": invoice.estado,
                "monto_pagado": str(invoice.monto_pagado),
                "saldo": str(invoice.saldo),
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get"], url_path="verificar-firma")
    def verificar_firma(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        try:
            resultado = validar_firma_factura(invoice)
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)
        return Response(resultado, status=status.HTTP_200_OK)

    @action(detail=False, methods=["post"], url_path="lote")
    def lote(self, request):
        ids = request.data.get("ids") or []
        if not isinstance(ids, list) or not ids:
            return Response(
                {"ids": "Indique la lista de documentos a enviar."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        invoices = list(self.get_queryset().filter(pk__in=ids))
        if len(invoices) != len(set(ids)):
            raise Http404("Alguno de los documentos no existe.")

        try:
            resultado = enviar_lote_sync(invoices)
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)

        numero_lote = resultado.get("numero_lote")
        if resultado.get("ok") and numero_lote:
            transaction.on_commit(
                lambda: consultar_lote_task.apply_async(args=[numero_lote], countdown=60)
            )
        http_status = status.HTTP_202_ACCEPTED if resultado.get("ok") else status.HTTP_400_BAD_REQUEST
        return Response(resultado, status=http_status)

    @action(detail=False, methods=["post"], url_path="desde-pedido")
    def desde_pedido(self, request):
        entrada = DesdePedidoSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)

        usuario = request.user if request.user.is_authenticated else None
        try:
            invoice = crear_factura_desde_pedido(
                entrada.validated_data["pedido"],
                entrada.validated_data["punto_emision"],
                usuario=usuario,
                items=entrada.validated_data.get("items"),
            )
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)

        data = self.get_serializer(invoice, context={"request": request}).data
        return Response(data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="reemitir")
    def reemitir(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        usuario = request.user if request.user.is_authenticated else None
        try:
            nuevo = reemitir_rechazada(invoice, usuario=usuario)
        except ERRORES_CLIENTE as exc:
            logger.warning("No se pudo reemitir el documento %s: %s", invoice.pk, exc)
            return respuesta_error(exc)

        data = self.get_serializer(self._get_invoice(nuevo.pk), context={"request": request}).data
        return Response(data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="lineas")
    def lineas(self, request, pk: Optional[str] = None):
        invoice = self._get_invoice(pk)
        entrada = InvoiceLineSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)
        try:
            agregar_linea(invoice, **entrada.validated_data)
        except ERRORES_CLIENTE as exc:
            return respuesta_error(exc)

        data = self.get_serializer(self._get_invoice(invoice.pk), context={"request": request}).data
        return Response(data, status=status.HTTP_201_CREATED)
