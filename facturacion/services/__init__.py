# facturacion/services/__init__.py
"""
Servicios de dominio para el módulo de facturación:

- Totales de documentos (services/totales.py).
- Integración SIFEN (XML, firma, envío, consulta, QR).

Los submódulos específicos viven en:
- facturacion/services/totales.py
- facturacion/services/sifen/
"""
