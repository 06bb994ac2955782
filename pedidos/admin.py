# pedidos/admin.py
from django.contrib import admin

from .models import DetallePedido, Pedido


class DetallePedidoInline(admin.TabularInline):
    model = DetallePedido
    extra = 0
    readonly_fields = ("cantidad_facturada", "sub_total", "deleted_at")


@admin.register(Pedido)
class PedidoAdmin(admin.ModelAdmin):
    list_display = ("codigo_tracking", "cliente", "estado", "created_at")
    list_filter = ("estado",)
    search_fields = ("codigo_tracking", "cliente__razon_social", "cliente__ruc")
    inlines = [DetallePedidoInline]
