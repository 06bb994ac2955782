from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bodega", "0001_initial"),
        ("clientes", "0001_initial"),
        ("facturacion", "0001_initial"),
        ("pedidos", "0001_initial"),
        ("productos", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Devolucion",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("numero", models.CharField(help_text="DEV-000001", max_length=20, unique=True)),
                (
                    "tipo",
                    models.CharField(
                        choices=[
                            ("PRODUCTO_FISICO", "Devolución de producto físico"),
                            ("CORRECCION_FACTURA", "Anulación/corrección de factura"),
                            ("AJUSTE_PEDIDO", "Ajuste de pedido pre-factura"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "estado",
                    models.CharField(
                        choices=[
                            ("SOLICITADA", "Solicitada"),
                            ("EN_REVISION", "En revisión"),
                            ("APROBADA", "Aprobada"),
                            ("EN_PROCESO", "En proceso"),
                            ("COMPLETADA", "Completada"),
                            ("RECHAZADA", "Rechazada"),
                            ("CANCELADA", "Cancelada"),
                        ],
                        db_index=True,
                        default="SOLICITADA",
                        max_length=20,
                    ),
                ),
                ("subtotal", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_descuento", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_iva", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("motivo", models.TextField()),
                ("observaciones", models.TextField(blank=True)),
                ("generar_nota_credito", models.BooleanField(default=False)),
                ("fecha_solicitud", models.DateTimeField(default=django.utils.timezone.now)),
                ("fecha_aprobacion", models.DateTimeField(blank=True, null=True)),
                ("fecha_completada", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "aprobado_por",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="devoluciones_aprobadas",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "cliente",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="devoluciones",
                        to="clientes.cliente",
                    ),
                ),
                (
                    "factura",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="devoluciones",
                        to="facturacion.invoice",
                    ),
                ),
                (
                    "pedido",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="devoluciones",
                        to="pedidos.pedido",
                    ),
                ),
                (
                    "revisado_por",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="devoluciones_revisadas",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "solicitado_por",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="devoluciones_solicitadas",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Devolución",
                "verbose_name_plural": "Devoluciones",
                "ordering": ["-fecha_solicitud", "-id"],
                "indexes": [models.Index(fields=["tipo", "estado"], name="dev_tipo_estado_idx")],
            },
        ),
        migrations.CreateModel(
            name="DetalleDevolucion",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("cantidad", models.PositiveIntegerField()),
                ("precio_unitario", models.DecimalField(decimal_places=2, max_digits=14)),
                ("descuento", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("tasa_iva", models.PositiveSmallIntegerField(default=10)),
                ("subtotal", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("iva", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                (
                    "estado_producto",
                    models.CharField(
                        choices=[("BUENO", "Bueno"), ("DANIADO", "Dañado"), ("DEFECTUOSO", "Defectuoso")],
                        default="BUENO",
                        max_length=12,
                    ),
                ),
                ("observaciones", models.CharField(blank=True, max_length=255)),
                (
                    "detalle_pedido",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="detalles_devolucion",
                        to="pedidos.detallepedido",
                    ),
                ),
                (
                    "devolucion",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="detalles",
                        to="devoluciones.devolucion",
                    ),
                ),
                (
                    "invoice_line",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="detalles_devolucion",
                        to="facturacion.invoiceline",
                    ),
                ),
                (
                    "movement_line",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="detalles_devolucion",
                        to="bodega.movementline",
                    ),
                ),
                (
                    "producto",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="detalles_devolucion",
                        to="productos.producto",
                    ),
                ),
            ],
            options={
                "verbose_name": "Detalle de devolución",
                "verbose_name_plural": "Detalles de devolución",
                "ordering": ["id"],
            },
        ),
    ]
