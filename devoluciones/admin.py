# devoluciones/admin.py
from django.contrib import admin

from .models import DetalleDevolucion, Devolucion


class DetalleDevolucionInline(admin.TabularInline):
    model = DetalleDevolucion
    extra = 0
    readonly_fields = ("subtotal", "iva", "total", "movement_line")


@admin.register(Devolucion)
class DevolucionAdmin(admin.ModelAdmin):
    list_display = ("numero", "tipo", "estado", "cliente", "total", "fecha_solicitud")
    list_filter = ("tipo", "estado", "generar_nota_credito")
    search_fields = ("numero", "cliente__razon_social", "cliente__ruc", "motivo")
    readonly_fields = (
        "numero",
        "estado",
        "subtotal",
        "total_descuento",
        "total_iva",
        "total",
        "fecha_aprobacion",
        "fecha_completada",
    )
    inlines = [DetalleDevolucionInline]
