# devoluciones/serializers.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from rest_framework import serializers

from clientes.models import Cliente
from devoluciones.models import DetalleDevolucion, Devolucion
from facturacion.models import Invoice, InvoiceLine
from pedidos.models import DetallePedido, Pedido
from productos.models import Producto


class DetalleDevolucionSerializer(serializers.ModelSerializer):
    producto_codigo = serializers.CharField(source="producto.codigo", read_only=True)
    producto_descripcion = serializers.CharField(source="producto.descripcion", read_only=True)

    class Meta:
        model = DetalleDevolucion
        fields = [
            "id",
            "producto",
            "producto_codigo",
            "producto_descripcion",
            "invoice_line",
            "detalle_pedido",
            "cantidad",
            "precio_unitario",
            "descuento",
            "tasa_iva",
            "subtotal",
            "iva",
            "total",
            "estado_producto",
            "observaciones",
            "movement_line",
        ]
        read_only_fields = fields


class DevolucionSerializer(serializers.ModelSerializer):
    """
    Lectura de devoluciones con sus líneas y la nota de crédito asociada
    (back-lookup Invoice.devolucion).
    """

    detalles = DetalleDevolucionSerializer(many=True, read_only=True)
    cliente_nombre = serializers.CharField(source="cliente.razon_social", read_only=True)
    nota_credito = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = Devolucion
        fields = [
            "id",
            "numero",
            "tipo",
            "estado",
            "factura",
            "pedido",
            "cliente",
            "cliente_nombre",
            "generar_nota_credito",
            "nota_credito",
            "subtotal",
            "total_descuento",
            "total_iva",
            "total",
            "motivo",
            "observaciones",
            "solicitado_por",
            "revisado_por",
            "aprobado_por",
            "fecha_solicitud",
            "fecha_aprobacion",
            "fecha_completada",
            "detalles",
        ]
        read_only_fields = fields

    def get_nota_credito(self, obj: Devolucion) -> Optional[Dict[str, Any]]:
        nota = Invoice.objects.filter(devolucion=obj).only("id", "estado", "cdc", "total").first()
        if nota is None:
            return None
        return {"id": nota.pk, "estado": nota.estado, "cdc": nota.cdc, "total": str(nota.total)}


# =========================
# Entradas
# =========================


class DetalleDevolucionInputSerializer(serializers.Serializer):
    producto = serializers.PrimaryKeyRelatedField(queryset=Producto.objects.all(), required=False)
    invoice_line = serializers.PrimaryKeyRelatedField(queryset=InvoiceLine.objects.all(), required=False)
    detalle_pedido = serializers.PrimaryKeyRelatedField(queryset=DetallePedido.objects.all(), required=False)
    cantidad = serializers.IntegerField(min_value=1)
    precio_unitario = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    descuento = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)
    tasa_iva = serializers.ChoiceField(choices=[0, 5, 10], required=False)
    estado_producto = serializers.ChoiceField(
        choices=DetalleDevolucion.EstadoProducto.choices,
        required=False,
    )
    observaciones = serializers.CharField(max_length=255, required=False, allow_blank=True)


class CrearDevolucionSerializer(serializers.Serializer):
    tipo = serializers.ChoiceField(choices=Devolucion.Tipo.choices)
    factura = serializers.PrimaryKeyRelatedField(
        queryset=Invoice.objects.filter(tipo_documento=Invoice.TipoDocumento.FACTURA),
        required=False,
    )
    pedido = serializers.PrimaryKeyRelatedField(queryset=Pedido.objects.all(), required=False)
    cliente = serializers.PrimaryKeyRelatedField(queryset=Cliente.objects.all(), required=False)
    motivo = serializers.CharField()
    observaciones = serializers.CharField(required=False, allow_blank=True, default="")
    generar_nota_credito = serializers.BooleanField(required=False, default=False)
    detalles = DetalleDevolucionInputSerializer(many=True)

    def validate_detalles(self, value: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not value:
            raise serializers.ValidationError("La devolución debe tener al menos un detalle.")
        return value


class MotivoSerializer(serializers.Serializer):
    motivo = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class AprobarSerializer(serializers.Serializer):
    emitir = serializers.BooleanField(required=False, default=False)
