# facturacion/urls.py
# -*- coding: utf-8 -*-
"""
Rutas REST del módulo de facturación electrónica (SIFEN).

En el urls.py del proyecto:
    path("api/facturacion/", include("facturacion.urls", namespace="facturacion"))
"""

from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from facturacion.viewsets import (
    EmpresaViewSet,
    EstablecimientoViewSet,
    FacturaViewSet,
    PuntoEmisionViewSet,
)

app_name = "facturacion"

router = DefaultRouter()

# Configuración del emisor
router.register(r"empresas", EmpresaViewSet, basename="empresa")
router.register(r"establecimientos", EstablecimientoViewSet, basename="establecimiento")
router.register(r"puntos-emision", PuntoEmisionViewSet, basename="punto-emision")

# Documentos electrónicos
router.register(r"facturas", FacturaViewSet, basename="factura")

urlpatterns = [
    path("", include(router.urls)),
]
