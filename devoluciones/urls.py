# devoluciones/urls.py
from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from devoluciones.viewsets import DevolucionViewSet

app_name = "devoluciones"

# Prefijo vacío: la raíz de la API es el listado (sin vista api-root)
router = SimpleRouter()
router.register(r"", DevolucionViewSet, basename="devolucion")

urlpatterns = [
    path("", include(router.urls)),
]
