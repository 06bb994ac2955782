# facturacion/serializers.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from django.db import transaction
from django.utils import timezone
from rest_framework import serializers

from facturacion.exceptions import WorkflowError
from facturacion.models import (
    Empresa,
    Establecimiento,
    Invoice,
    InvoiceLine,
    Pago,
    PuntoEmision,
)
from facturacion.services.totales import agregar_linea
from pedidos.models import Pedido


# =========================
# Serializers de configuración
# =========================


class EmpresaSerializer(serializers.ModelSerializer):
    """
    Emisor SIFEN. El DV del RUC es siempre derivado (Módulo 11).
    La contraseña del certificado nunca se devuelve.
    """

    dv_ruc = serializers.IntegerField(read_only=True)
    tiene_certificado = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = Empresa
        fields = [
            "id",
            "ruc",
            "dv_ruc",
            "razon_social",
            "nombre_fantasia",
            "tipo_contribuyente",
            "direccion",
            "departamento",
            "ciudad",
            "telefono",
            "email",
            "timbrado",
            "timbrado_inicio",
            "ambiente",
            "tiene_certificado",
            "is_active",
        ]
        read_only_fields = fields

    def get_tiene_certificado(self, obj: Empresa) -> bool:
        return bool(obj.certificado)


class EstablecimientoSerializer(serializers.ModelSerializer):
    class Meta:
        model = Establecimiento
        fields = ["id", "empresa", "codigo", "nombre", "direccion"]
        read_only_fields = fields


class PuntoEmisionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PuntoEmision
        fields = [
            "id",
            "establecimiento",
            "codigo",
            "descripcion",
            "secuencial_factura",
            "secuencial_nota_credito",
            "is_active",
        ]
        read_only_fields = fields


# =========================
# Documentos
# =========================


class InvoiceLineSerializer(serializers.ModelSerializer):
    # subtotal/iva/total siempre se derivan en el backend
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    iva = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    total = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    descripcion = serializers.CharField(required=False, allow_blank=True)

    class Meta:
        model = InvoiceLine
        fields = [
            "id",
            "producto",
            "detalle_pedido",
            "codigo",
            "descripcion",
            "unidad_medida",
            "cantidad",
            "precio_unitario",
            "descuento",
            "tasa_iva",
            "subtotal",
            "iva",
            "total",
        ]
        read_only_fields = ["id", "detalle_pedido"]

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        producto = attrs.get("producto")
        if not attrs.get("descripcion"):
            if producto is None:
                raise serializers.ValidationError(
                    {"descripcion": "La descripción es obligatoria si no se indica producto."}
                )
            attrs["descripcion"] = producto.descripcion
        if producto is not None and not attrs.get("codigo"):
            attrs["codigo"] = producto.codigo
        return attrs


class PagoSerializer(serializers.ModelSerializer):
    class Meta:
        model = Pago
        fields = ["id", "invoice", "monto", "metodo", "referencia", "fecha", "registrado_por"]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    """
    Serializer principal de documentos (facturas y notas de crédito).

    - Lectura: cabecera, líneas, pagos y estado SIFEN.
    - create(): crea un BORRADOR con líneas; totales derivados de las líneas.
      CDC, secuencial y XML se asignan en el workflow (acción `generar`).
    """

    lines = InvoiceLineSerializer(many=True)
    pagos = PagoSerializer(many=True, read_only=True)
    numero_display = serializers.ReadOnlyField()
    nota_credito_ids = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "tipo_documento",
            "estado",
            # Relaciones y numeración
            "empresa",
            "establecimiento",
            "punto_emision",
            "secuencial",
            "numero_display",
            "cliente",
            "pedido",
            "factura_original",
            "devolucion",
            "reemplaza",
            "nota_credito_ids",
            "fecha_emision",
            "moneda",
            # Receptor
            "ruc_receptor",
            "razon_social_receptor",
            "direccion_receptor",
            "telefono_receptor",
            "email_receptor",
            # Totales
            "subtotal",
            "total_iva5",
            "total_iva10",
            "total_iva",
            "total_descuento",
            "total",
            "monto_pagado",
            "saldo",
            # SIFEN
            "cdc",
            "codigo_respuesta",
            "mensaje_respuesta",
            "protocolo_autorizacion",
            "numero_lote",
            "qr_url",
            "qr_imagen",
            "mensajes_sifen",
            "fecha_envio",
            "fecha_aprobacion",
            # Anulación
            "anulada_at",
            "motivo_anulacion",
            "requiere_cancelacion_sifen",
            "observaciones",
            "lines",
            "pagos",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "tipo_documento",
            "estado",
            "empresa",
            "establecimiento",
            "secuencial",
            "pedido",
            "factura_original",
            "devolucion",
            "reemplaza",
            "subtotal",
            "total_iva5",
            "total_iva10",
            "total_iva",
            "total_descuento",
            "total",
            "monto_pagado",
            "saldo",
            "cdc",
            "codigo_respuesta",
            "mensaje_respuesta",
            "protocolo_autorizacion",
            "numero_lote",
            "qr_url",
            "qr_imagen",
            "mensajes_sifen",
            "fecha_envio",
            "fecha_aprobacion",
            "anulada_at",
            "motivo_anulacion",
            "requiere_cancelacion_sifen",
            "created_at",
            "updated_at",
        ]
        extra_kwargs = {"fecha_emision": {"required": False}}

    def get_nota_credito_ids(self, obj: Invoice) -> List[int]:
        if obj.es_nota_credito:
            return []
        return list(obj.notas_credito.values_list("id", flat=True))

    def validate_punto_emision(self, value: PuntoEmision) -> PuntoEmision:
        if not value.is_active:
            raise serializers.ValidationError("El punto de expedición está inactivo.")
        if not value.establecimiento.empresa.is_active:
            raise serializers.ValidationError("La empresa emisora está inactiva.")
        return value

    def validate_lines(self, value: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not value:
            raise serializers.ValidationError("El documento debe tener al menos una línea.")
        return value

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        cliente = attrs.get("cliente")
        if cliente is None and not attrs.get("razon_social_receptor"):
            raise serializers.ValidationError(
                {"razon_social_receptor": "Indique un cliente o la razón social del receptor."}
            )
        return attrs

    def create(self, validated_data: Dict[str, Any]) -> Invoice:
        lines_data: List[Dict[str, Any]] = validated_data.pop("lines", [])
        punto_emision: PuntoEmision = validated_data["punto_emision"]
        establecimiento = punto_emision.establecimiento

        cliente = validated_data.get("cliente")
        if cliente is not None:
            # Snapshot del receptor; lo enviado explícitamente tiene prioridad
            validated_data.setdefault("ruc_receptor", cliente.ruc)
            validated_data.setdefault("razon_social_receptor", cliente.razon_social)
            validated_data.setdefault("direccion_receptor", cliente.direccion)
            validated_data.setdefault("telefono_receptor", cliente.telefono)
            validated_data.setdefault("email_receptor", cliente.email)

        validated_data.setdefault("fecha_emision", timezone.now())
        validated_data["empresa"] = establecimiento.empresa
        validated_data["establecimiento"] = establecimiento
        validated_data["tipo_documento"] = Invoice.TipoDocumento.FACTURA
        validated_data["estado"] = Invoice.Estado.BORRADOR

        request = self.context.get("request")
        if request is not None and request.user.is_authenticated:
            validated_data["created_by"] = request.user

        with transaction.atomic():
            invoice = Invoice.objects.create(**validated_data)
            for line_data in lines_data:
                try:
                    agregar_linea(invoice, **line_data)
                except WorkflowError as exc:
                    raise serializers.ValidationError({"lines": str(exc)}) from exc
        return invoice


# =========================
# Entradas de acciones
# =========================


class AnularSerializer(serializers.Serializer):
    motivo = serializers.CharField(max_length=500, trim_whitespace=True)


class RegistrarPagoSerializer(serializers.Serializer):
    monto = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
    metodo = serializers.ChoiceField(choices=Pago.Metodo.choices, default=Pago.Metodo.EFECTIVO)
    referencia = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class ItemFacturaParcialSerializer(serializers.Serializer):
    detalle_pedido = serializers.IntegerField()
    cantidad = serializers.IntegerField(min_value=1)
    precio_unitario = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.00"),
        required=False,
    )


class DesdePedidoSerializer(serializers.Serializer):
    """
    Sin `items` se factura todo lo pendiente del pedido; con `items`, solo esas
    líneas y cantidades (factura parcial).
    """

    pedido = serializers.PrimaryKeyRelatedField(queryset=Pedido.objects.all())
    punto_emision = serializers.PrimaryKeyRelatedField(queryset=PuntoEmision.objects.all())
    items = ItemFacturaParcialSerializer(many=True, required=False, allow_empty=False)
