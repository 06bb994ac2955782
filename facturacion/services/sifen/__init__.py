# facturacion/services/sifen/__init__.py
"""
Servicios relacionados con SIFEN:

- xml_invoice_builder: construcción del DE (factura y nota de crédito).
- validator: validación opcional contra XSD.
- signer: firma XMLDSig (RSA-SHA256) y verificación.
- client: cliente SOAP 1.2 (recibe, recibe-lote, consulta, consulta-lote).
- qr: URL e imagen QR del documento aprobado.
- workflow: ciclo de vida del documento frente a SIFEN.
"""
