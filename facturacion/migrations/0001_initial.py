from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("clientes", "0001_initial"),
        ("pedidos", "0001_initial"),
        ("productos", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Empresa",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "ruc",
                    models.CharField(
                        help_text="RUC del emisor sin dígito verificador (hasta 8 dígitos).",
                        max_length=8,
                        unique=True,
                    ),
                ),
                ("razon_social", models.CharField(max_length=255)),
                ("nombre_fantasia", models.CharField(blank=True, max_length=255)),
                (
                    "tipo_contribuyente",
                    models.CharField(
                        choices=[("1", "Persona física"), ("2", "Persona jurídica")],
                        default="2",
                        max_length=1,
                    ),
                ),
                ("direccion", models.CharField(blank=True, max_length=255)),
                ("numero_casa", models.CharField(default="0", max_length=10)),
                ("departamento_codigo", models.PositiveSmallIntegerField(default=1)),
                ("departamento", models.CharField(default="CAPITAL", max_length=64)),
                ("ciudad_codigo", models.PositiveIntegerField(default=1)),
                ("ciudad", models.CharField(default="ASUNCION (DISTRITO)", max_length=64)),
                ("telefono", models.CharField(blank=True, max_length=32)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("actividad_economica_codigo", models.CharField(blank=True, max_length=8)),
                ("actividad_economica", models.CharField(blank=True, max_length=255)),
                (
                    "timbrado",
                    models.CharField(blank=True, help_text="Número de timbrado vigente (dNumTim).", max_length=8),
                ),
                ("timbrado_inicio", models.DateField(blank=True, null=True)),
                (
                    "ambiente",
                    models.CharField(
                        choices=[("1", "Pruebas"), ("2", "Producción")],
                        default="1",
                        help_text="Ambiente para envío a SIFEN (1=Pruebas, 2=Producción).",
                        max_length=1,
                    ),
                ),
                (
                    "certificado",
                    models.FileField(
                        blank=True,
                        help_text="Archivo .p12/.pfx con el certificado de firma electrónica.",
                        null=True,
                        upload_to="facturacion/certificados/",
                    ),
                ),
                (
                    "certificado_password",
                    models.CharField(
                        blank=True,
                        help_text="Contraseña del certificado (idealmente gestionada por un vault).",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Si está desactivada, la empresa no puede emitir nuevos documentos.",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Empresa emisora",
                "verbose_name_plural": "Empresas emisoras",
            },
        ),
        migrations.CreateModel(
            name="Secuencia",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("nombre", models.CharField(max_length=50, unique=True)),
                ("valor", models.PositiveIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Secuencia",
                "verbose_name_plural": "Secuencias",
            },
        ),
        migrations.CreateModel(
            name="Establecimiento",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "codigo",
                    models.CharField(help_text="Código de establecimiento (3 dígitos, ej. '001').", max_length=3),
                ),
                ("nombre", models.CharField(blank=True, max_length=255)),
                ("direccion", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "empresa",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="establecimientos",
                        to="facturacion.empresa",
                    ),
                ),
            ],
            options={
                "verbose_name": "Establecimiento",
                "verbose_name_plural": "Establecimientos",
                "unique_together": {("empresa", "codigo")},
            },
        ),
        migrations.CreateModel(
            name="PuntoEmision",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "codigo",
                    models.CharField(help_text="Código de punto de expedición (3 dígitos, ej. '001').", max_length=3),
                ),
                ("descripcion", models.CharField(blank=True, max_length=255)),
                ("secuencial_factura", models.PositiveIntegerField(default=0)),
                ("secuencial_nota_credito", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "establecimiento",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="puntos_emision",
                        to="facturacion.establecimiento",
                    ),
                ),
            ],
            options={
                "verbose_name": "Punto de expedición",
                "verbose_name_plural": "Puntos de expedición",
                "unique_together": {("establecimiento", "codigo")},
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "estado",
                    models.CharField(
                        choices=[
                            ("BORRADOR", "Borrador"),
                            ("GENERADA", "XML generado"),
                            ("ENVIADA", "Enviada a SIFEN"),
                            ("APROBADA", "Aprobada por SIFEN"),
                            ("RECHAZADA", "Rechazada por SIFEN"),
                            ("PAGADA", "Pagada"),
                            ("PAGADA_PARCIAL", "Pagada parcialmente"),
                            ("ANULADA", "Anulada"),
                        ],
                        db_index=True,
                        default="BORRADOR",
                        max_length=20,
                    ),
                ),
                (
                    "tipo_documento",
                    models.CharField(
                        choices=[("1", "Factura electrónica"), ("5", "Nota de crédito electrónica")],
                        default="1",
                        max_length=1,
                    ),
                ),
                (
                    "motivo_emision",
                    models.PositiveSmallIntegerField(
                        default=2, help_text="iMotEmi de la nota de crédito (2 = Devolución)."
                    ),
                ),
                ("secuencial", models.PositiveIntegerField(blank=True, null=True)),
                ("fecha_emision", models.DateTimeField()),
                ("moneda", models.CharField(default="PYG", max_length=3)),
                ("ruc_receptor", models.CharField(blank=True, max_length=20)),
                ("razon_social_receptor", models.CharField(blank=True, max_length=255)),
                ("direccion_receptor", models.CharField(blank=True, max_length=255)),
                ("telefono_receptor", models.CharField(blank=True, max_length=32)),
                ("email_receptor", models.EmailField(blank=True, max_length=254)),
                ("subtotal", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_iva5", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_iva10", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_iva", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_descuento", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("monto_pagado", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("saldo", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("cdc", models.CharField(blank=True, max_length=44, null=True, unique=True)),
                ("codigo_seguridad", models.CharField(blank=True, max_length=9)),
                ("xml_generado", models.TextField(blank=True, null=True)),
                ("xml_firmado", models.TextField(blank=True, null=True)),
                ("codigo_respuesta", models.CharField(blank=True, max_length=10)),
                ("mensaje_respuesta", models.TextField(blank=True)),
                ("protocolo_autorizacion", models.CharField(blank=True, max_length=64)),
                ("respuesta_raw", models.TextField(blank=True)),
                ("numero_lote", models.CharField(blank=True, db_index=True, max_length=64)),
                ("qr_url", models.TextField(blank=True)),
                ("qr_imagen", models.TextField(blank=True, help_text="data:image/png;base64,...")),
                ("mensajes_sifen", models.JSONField(blank=True, default=list)),
                ("fecha_envio", models.DateTimeField(blank=True, null=True)),
                ("fecha_aprobacion", models.DateTimeField(blank=True, null=True)),
                ("anulada_at", models.DateTimeField(blank=True, null=True)),
                ("motivo_anulacion", models.TextField(blank=True)),
                (
                    "requiere_cancelacion_sifen",
                    models.BooleanField(
                        default=False,
                        help_text="Aprobada con CDC y anulada localmente: cancelar manualmente en SIFEN.",
                    ),
                ),
                ("observaciones", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "cliente",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="clientes.cliente",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="invoices_created",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "empresa",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="facturacion.empresa",
                    ),
                ),
                (
                    "establecimiento",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="facturacion.establecimiento",
                    ),
                ),
                (
                    "factura_original",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="notas_credito",
                        to="facturacion.invoice",
                    ),
                ),
                (
                    "pedido",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="pedidos.pedido",
                    ),
                ),
                (
                    "punto_emision",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="facturacion.puntoemision",
                    ),
                ),
            ],
            options={
                "verbose_name": "Documento electrónico",
                "verbose_name_plural": "Documentos electrónicos",
                "unique_together": {("punto_emision", "tipo_documento", "secuencial")},
                "indexes": [
                    models.Index(fields=["empresa", "estado", "fecha_emision"], name="inv_emp_estado_fecha_idx")
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("codigo", models.CharField(blank=True, max_length=50)),
                ("descripcion", models.CharField(max_length=300)),
                ("unidad_medida", models.PositiveSmallIntegerField(default=77)),
                ("cantidad", models.DecimalField(decimal_places=4, max_digits=14)),
                ("precio_unitario", models.DecimalField(decimal_places=2, max_digits=14)),
                ("descuento", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                (
                    "tasa_iva",
                    models.PositiveSmallIntegerField(
                        choices=[(0, "Exento"), (5, "IVA 5%"), (10, "IVA 10%")], default=10
                    ),
                ),
                ("subtotal", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("iva", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                (
                    "detalle_pedido",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoice_lines",
                        to="pedidos.detallepedido",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="facturacion.invoice",
                    ),
                ),
                (
                    "producto",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoice_lines",
                        to="productos.producto",
                    ),
                ),
            ],
            options={
                "verbose_name": "Línea de documento",
                "verbose_name_plural": "Líneas de documento",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="Pago",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("monto", models.DecimalField(decimal_places=2, max_digits=14)),
                (
                    "metodo",
                    models.CharField(
                        choices=[
                            ("EFECTIVO", "Efectivo"),
                            ("TRANSFERENCIA", "Transferencia"),
                            ("TARJETA", "Tarjeta"),
                            ("CHEQUE", "Cheque"),
                            ("OTRO", "Otro"),
                        ],
                        default="EFECTIVO",
                        max_length=20,
                    ),
                ),
                ("referencia", models.CharField(blank=True, max_length=255)),
                ("fecha", models.DateTimeField(auto_now_add=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="pagos",
                        to="facturacion.invoice",
                    ),
                ),
                (
                    "registrado_por",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="pagos_registrados",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Pago",
                "verbose_name_plural": "Pagos",
                "ordering": ["fecha", "id"],
            },
        ),
    ]
