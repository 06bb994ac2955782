# facturacion/admin.py
from __future__ import annotations

from django.contrib import admin

from facturacion.models import (
    Empresa,
    Establecimiento,
    Invoice,
    InvoiceLine,
    Pago,
    PuntoEmision,
    Secuencia,
)


@admin.register(Empresa)
class EmpresaAdmin(admin.ModelAdmin):
    list_display = ("ruc", "razon_social", "timbrado", "ambiente", "is_active", "created_at")
    list_filter = ("ambiente", "is_active")
    search_fields = ("ruc", "razon_social", "nombre_fantasia")
    readonly_fields = ("created_at", "updated_at")
    fieldsets = (
        (
            "Datos generales",
            {
                "fields": (
                    "ruc",
                    "razon_social",
                    "nombre_fantasia",
                    "tipo_contribuyente",
                    "is_active",
                )
            },
        ),
        (
            "Ubicación y contacto",
            {
                "fields": (
                    "direccion",
                    "numero_casa",
                    ("departamento_codigo", "departamento"),
                    ("ciudad_codigo", "ciudad"),
                    "telefono",
                    "email",
                    ("actividad_economica_codigo", "actividad_economica"),
                )
            },
        ),
        ("Timbrado y ambiente", {"fields": ("timbrado", "timbrado_inicio", "ambiente")}),
        ("Certificado de firma", {"fields": ("certificado", "certificado_password")}),
        ("Auditoría", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(Establecimiento)
class EstablecimientoAdmin(admin.ModelAdmin):
    list_display = ("empresa", "codigo", "nombre")
    search_fields = ("empresa__ruc", "codigo", "nombre")


@admin.register(PuntoEmision)
class PuntoEmisionAdmin(admin.ModelAdmin):
    list_display = (
        "establecimiento",
        "codigo",
        "secuencial_factura",
        "secuencial_nota_credito",
        "is_active",
    )
    readonly_fields = ("secuencial_factura", "secuencial_nota_credito")


ESTADOS_EDITABLES = (Invoice.Estado.BORRADOR, Invoice.Estado.GENERADA)


def _editable(invoice) -> bool:
    return invoice is None or invoice.estado in ESTADOS_EDITABLES


class InvoiceLineInline(admin.TabularInline):
    """
    Líneas editables solo mientras el documento no fue enviado.
    """

    model = InvoiceLine
    extra = 0
    readonly_fields = ("subtotal", "iva", "total")

    def has_add_permission(self, request, obj=None):
        return _editable(obj) and super().has_add_permission(request, obj)

    def has_change_permission(self, request, obj=None):
        return _editable(obj) and super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        return _editable(obj) and super().has_delete_permission(request, obj)


class PagoInline(admin.TabularInline):
    model = Pago
    extra = 0
    readonly_fields = ("monto", "metodo", "referencia", "fecha", "registrado_por")
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "tipo_documento",
        "numero_display",
        "razon_social_receptor",
        "estado",
        "total",
        "saldo",
        "fecha_emision",
        "requiere_cancelacion_sifen",
    )
    list_filter = ("estado", "tipo_documento", "empresa", "requiere_cancelacion_sifen")
    search_fields = ("cdc", "ruc_receptor", "razon_social_receptor", "numero_lote")
    date_hierarchy = "fecha_emision"
    inlines = [InvoiceLineInline, PagoInline]
    readonly_fields = (
        "estado",
        "cdc",
        "codigo_seguridad",
        "secuencial",
        "subtotal",
        "total_iva5",
        "total_iva10",
        "total_iva",
        "total_descuento",
        "total",
        "monto_pagado",
        "saldo",
        "codigo_respuesta",
        "mensaje_respuesta",
        "protocolo_autorizacion",
        "respuesta_raw",
        "numero_lote",
        "xml_generado",
        "xml_firmado",
        "qr_url",
        "qr_imagen",
        "mensajes_sifen",
        "fecha_envio",
        "fecha_aprobacion",
        "anulada_at",
        "motivo_anulacion",
        "requiere_cancelacion_sifen",
        "reemplaza",
        "created_at",
        "updated_at",
    )

    def get_readonly_fields(self, request, obj=None):
        # Enviado, aprobado o anulado: el documento queda congelado
        if not _editable(obj):
            return [field.name for field in self.model._meta.fields]
        return super().get_readonly_fields(request, obj)

    def has_delete_permission(self, request, obj=None):
        return _editable(obj) and super().has_delete_permission(request, obj)


@admin.register(Secuencia)
class SecuenciaAdmin(admin.ModelAdmin):
    list_display = ("nombre", "valor")
    readonly_fields = ("valor",)
