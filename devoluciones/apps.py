# devoluciones/apps.py
from django.apps import AppConfig


class DevolucionesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "devoluciones"
    verbose_name = "Devoluciones de venta"
