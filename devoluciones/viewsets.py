# devoluciones/viewsets.py
from __future__ import annotations

import logging
from typing import Optional

from django.http import Http404
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from devoluciones.models import Devolucion
from devoluciones.serializers import (
    AprobarSerializer,
    CrearDevolucionSerializer,
    DevolucionSerializer,
    MotivoSerializer,
)
from devoluciones.services import (
    ReturnError,
    aprobar_devolucion,
    cancelar_devolucion,
    crear_devolucion,
    rechazar_devolucion,
    revisar_devolucion,
)
from facturacion.exceptions import WorkflowError
from facturacion.pagination import FacturacionPagination
from facturacion.viewsets import respuesta_error
from pedidos.models import PedidoError

logger = logging.getLogger(__name__)

ERRORES_NEGOCIO = (ReturnError, WorkflowError, PedidoError)


class DevolucionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API de devoluciones.

    - list/retrieve, filtros ?estado=, ?tipo=, ?cliente=
    - create: crea la devolución SOLICITADA
    - acciones: revisar, aprobar (emitir=true encola la nota de crédito), rechazar, cancelar
    """

    serializer_class = DevolucionSerializer
    pagination_class = FacturacionPagination
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = Devolucion.objects.select_related("cliente", "factura", "pedido").prefetch_related(
            "detalles__producto"
        )
        params = self.request.query_params
        if params.get("estado"):
            qs = qs.filter(estado=params["estado"].upper())
        if params.get("tipo"):
            qs = qs.filter(tipo=params["tipo"].upper())
        if params.get("cliente"):
            qs = qs.filter(cliente_id=params["cliente"])
        return qs

    def _get_devolucion(self, pk: Optional[str]) -> Devolucion:
        try:
            return self.get_queryset().get(pk=pk)
        except Devolucion.DoesNotExist:
            raise Http404("Devolución no encontrada.")

    def _usuario(self, request):
        return request.user if request.user.is_authenticated else None

    def _ok(self, request, devolucion: Devolucion, http_status=status.HTTP_200_OK) -> Response:
        devolucion = self._get_devolucion(devolucion.pk)
        return Response(self.get_serializer(devolucion, context={"request": request}).data, status=http_status)

    def create(self, request, *args, **kwargs):
        entrada = CrearDevolucionSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)
        datos = dict(entrada.validated_data)
        lineas = [dict(d) for d in datos.pop("detalles")]

        try:
            devolucion = crear_devolucion(lineas=lineas, usuario=self._usuario(request), **datos)
        except ERRORES_NEGOCIO as exc:
            logger.warning("Devolución rechazada en creación: %s", exc)
            return respuesta_error(exc)
        return self._ok(request, devolucion, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="revisar")
    def revisar(self, request, pk: Optional[str] = None):
        devolucion = self._get_devolucion(pk)
        try:
            revisar_devolucion(devolucion, usuario=self._usuario(request))
        except ERRORES_NEGOCIO as exc:
            return respuesta_error(exc)
        return self._ok(request, devolucion)

    @action(detail=True, methods=["post"], url_path="aprobar")
    def aprobar(self, request, pk: Optional[str] = None):
        devolucion = self._get_devolucion(pk)
        entrada = AprobarSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)
        try:
            aprobar_devolucion(
                devolucion,
                usuario=self._usuario(request),
                emitir=entrada.validated_data["emitir"],
            )
        except ERRORES_NEGOCIO as exc:
            logger.warning("No se pudo aprobar la devolución %s: %s", devolucion.numero, exc)
            return respuesta_error(exc)
        return self._ok(request, devolucion)

    @action(detail=True, methods=["post"], url_path="rechazar")
    def rechazar(self, request, pk: Optional[str] = None):
        devolucion = self._get_devolucion(pk)
        entrada = MotivoSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)
        try:
            rechazar_devolucion(devolucion, entrada.validated_data["motivo"], usuario=self._usuario(request))
        except ERRORES_NEGOCIO as exc:
            return respuesta_error(exc)
        return self._ok(request, devolucion)

    @action(detail=True, methods=["post"], url_path="cancelar")
    def cancelar(self, request, pk: Optional[str] = None):
        devolucion = self._get_devolucion(pk)
        entrada = MotivoSerializer(data=request.data)
        entrada.is_valid(raise_exception=True)
        try:
            cancelar_devolucion(devolucion, entrada.validated_data["motivo"])
        except ERRORES_NEGOCIO as exc:
            return respuesta_error(exc)
        return self._ok(request, devolucion)
