# clientes/admin.py
from django.contrib import admin
from .models import Cliente

@admin.register(Cliente)
class ClienteAdmin(admin.ModelAdmin):
    list_display = ('ruc', 'razon_social', 'naturaleza', 'ciudad', 'email', 'activo', 'actualizado')
    list_filter = ('activo', 'naturaleza', 'ciudad')
    search_fields = ('ruc', 'razon_social', 'email')
    ordering = ('-actualizado',)
