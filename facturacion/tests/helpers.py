# facturacion/tests/helpers.py
# -*- coding: utf-8 -*-
"""
Datos mínimos compartidos por los tests de facturación y devoluciones.
"""
from __future__ import annotations

import datetime
import shutil
import tempfile
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID
from django.core.files.base import ContentFile
from django.test import override_settings
from django.utils import timezone

from clientes.models import Cliente
from facturacion.models import Empresa, Establecimiento, Invoice, InvoiceLine, PuntoEmision
from facturacion.services.totales import calcular_linea, recalcular_totales
from pedidos.models import DetallePedido, Pedido
from productos.models import Producto

CERT_PASSWORD = "clave-test"


def generar_p12(
    password: str = CERT_PASSWORD,
    *,
    dias_validez: int = 365,
    inicio: Optional[datetime.datetime] = None,
) -> bytes:
    """
    PKCS12 autofirmado (RSA 2048) para firmar DE en tests.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    nombre = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "PY"),
            x509.NameAttribute(NameOID.COMMON_NAME, "EMPRESA TEST SA"),
        ]
    )
    inicio = inicio or (datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=1))
    cert = (
        x509.CertificateBuilder()
        .subject_name(nombre)
        .issuer_name(nombre)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(inicio)
        .not_valid_after(inicio + datetime.timedelta(days=dias_validez))
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"test",
        key,
        cert,
        None,
        BestAvailableEncryption(password.encode("utf-8")),
    )


def crear_entidades(
    *,
    ruc: str = "80012345",
    con_certificado: bool = False,
) -> Tuple[Empresa, Establecimiento, PuntoEmision]:
    """
    Empresa + establecimiento 001 + punto de expedición 001.
    Con certificado, el .p12 se guarda en MEDIA_ROOT (usar override_settings).
    """
    empresa = Empresa.objects.create(
        ruc=ruc,
        razon_social="EMPRESA TEST SA",
        nombre_fantasia="EMPRESA TEST",
        direccion="Avda. Mcal. López 1234",
        timbrado="12345678",
        timbrado_inicio=datetime.date(2024, 1, 1),
        ambiente=Empresa.AMBIENTE_PRUEBAS,
        is_active=True,
    )
    if con_certificado:
        empresa.certificado_password = CERT_PASSWORD
        empresa.certificado.save("empresa_test.p12", ContentFile(generar_p12()), save=False)
        empresa.save()

    establecimiento = Establecimiento.objects.create(
        empresa=empresa,
        codigo="001",
        nombre="Matriz",
        direccion="Asunción",
    )
    punto = PuntoEmision.objects.create(
        establecimiento=establecimiento,
        codigo="001",
        descripcion="Caja 1",
    )
    return empresa, establecimiento, punto


def crear_cliente(ruc: str = "80099999-1", razon_social: str = "Cliente de Prueba SA") -> Cliente:
    return Cliente.objects.create(
        ruc=ruc,
        razon_social=razon_social,
        direccion="Calle Falsa 123",
        email="cliente@example.com",
    )


def crear_producto(
    codigo: str,
    precio: str,
    tasa_iva: int = 10,
    *,
    es_servicio: bool = False,
) -> Producto:
    return Producto.objects.create(
        codigo=codigo,
        descripcion=f"Producto {codigo}",
        precio=Decimal(precio),
        tasa_iva=tasa_iva,
        es_servicio=es_servicio,
    )


def crear_factura(
    punto: PuntoEmision,
    lineas: Iterable[dict],
    *,
    cliente: Optional[Cliente] = None,
    pedido: Optional[Pedido] = None,
) -> Invoice:
    """
    Factura BORRADOR con líneas y totales derivados.
    Cada línea: dict con producto o descripcion, cantidad, precio_unitario, tasa_iva.
    """
    establecimiento = punto.establecimiento
    invoice = Invoice.objects.create(
        empresa=establecimiento.empresa,
        establecimiento=establecimiento,
        punto_emision=punto,
        cliente=cliente,
        pedido=pedido,
        fecha_emision=timezone.now(),
        ruc_receptor=cliente.ruc if cliente else "80099999-1",
        razon_social_receptor=cliente.razon_social if cliente else "Cliente de Prueba SA",
    )
    for datos in lineas:
        datos = dict(datos)
        producto = datos.get("producto")
        if producto is not None:
            datos.setdefault("codigo", producto.codigo)
            datos.setdefault("descripcion", producto.descripcion)
        linea = InvoiceLine(invoice=invoice, **datos)
        calcular_linea(linea)
        linea.save()
    return recalcular_totales(invoice)


def factura_250(punto: PuntoEmision, **kwargs) -> Invoice:
    """
    2 x 100 al 10% + 1 x 50 al 5%: subtotal 250.00, IVA 22.50, total 272.50.
    """
    return crear_factura(
        punto,
        [
            {"descripcion": "Producto A", "cantidad": Decimal("2"), "precio_unitario": Decimal("100.00"), "tasa_iva": 10},
            {"descripcion": "Producto B", "cantidad": Decimal("1"), "precio_unitario": Decimal("50.00"), "tasa_iva": 5},
        ],
        **kwargs,
    )


def crear_pedido(cliente: Cliente, items: Iterable[Tuple[Producto, int]]) -> Pedido:
    pedido = Pedido.objects.create(cliente=cliente, codigo_tracking=f"PED-{Pedido.objects.count() + 1:05d}")
    for producto, cantidad in items:
        detalle = DetallePedido(
            pedido=pedido,
            producto=producto,
            cantidad=cantidad,
            precio_unitario=producto.precio,
        )
        detalle.recalcular_sub_total()
        detalle.save()
    return pedido


def forzar_estado(invoice: Invoice, estado: str, **campos) -> Invoice:
    """
    Fija estado (y campos extra) directo en base, sin pasar por el workflow.
    """
    Invoice.objects.filter(pk=invoice.pk).update(estado=estado, **campos)
    invoice.refresh_from_db()
    return invoice


class MediaTemporalMixin:
    """
    MEDIA_ROOT temporal por clase de test (certificados .p12).
    """

    @classmethod
    def setUpClass(cls):
        cls._media_root = tempfile.mkdtemp(prefix="facturacion-test-")
        cls._media_override = override_settings(MEDIA_ROOT=cls._media_root)
        cls._media_override.enable()
        super().setUpClass()

    @classmethod
    def tearDownClass(cls):
        super().tearDownClass()
        cls._media_override.disable()
        shutil.rmtree(cls._media_root, ignore_errors=True)
