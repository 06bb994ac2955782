import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("productos", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Warehouse",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120, verbose_name="Nombre")),
                ("code", models.CharField(max_length=30, unique=True, verbose_name="Código")),
                ("address", models.CharField(blank=True, default="", max_length=255, verbose_name="Dirección")),
                ("active", models.BooleanField(default=True, verbose_name="Activa")),
                (
                    "is_default_returns",
                    models.BooleanField(
                        default=False,
                        help_text="Bodega por defecto para reingresos de devoluciones físicas.",
                        verbose_name="Recibe devoluciones",
                    ),
                ),
            ],
            options={
                "verbose_name": "Bodega",
                "verbose_name_plural": "Bodegas",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Movement",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateTimeField(default=django.utils.timezone.now)),
                ("type", models.CharField(choices=[("IN", "Ingreso")], max_length=12)),
                ("note", models.TextField(blank=True, default="")),
                ("reference", models.CharField(blank=True, db_index=True, default="", max_length=60)),
                (
                    "applied_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Momento en que el movimiento fue aplicado a stock (idempotencia).",
                        null=True,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory_movements",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Movimiento",
                "verbose_name_plural": "Movimientos",
                "ordering": ["-date", "-id"],
            },
        ),
        migrations.CreateModel(
            name="MovementLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quantity", models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                (
                    "stock_state",
                    models.CharField(
                        choices=[("EN_DEPOSITO", "En depósito"), ("DANIADO", "Dañado")],
                        default="EN_DEPOSITO",
                        max_length=12,
                    ),
                ),
                ("note", models.CharField(blank=True, default="", max_length=255)),
                (
                    "movement",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="bodega.movement",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, to="productos.producto"),
                ),
                (
                    "warehouse_to",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="in_lines",
                        to="bodega.warehouse",
                    ),
                ),
            ],
            options={
                "verbose_name": "Línea de Movimiento",
                "verbose_name_plural": "Líneas de Movimiento",
                "indexes": [models.Index(fields=["product"], name="bodega_mvline_product_idx")],
            },
        ),
        migrations.CreateModel(
            name="StockItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quantity", models.IntegerField(default=0)),
                ("damaged_quantity", models.PositiveIntegerField(default=0)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stock_items",
                        to="productos.producto",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stock_items",
                        to="bodega.warehouse",
                    ),
                ),
            ],
            options={
                "verbose_name": "Stock",
                "verbose_name_plural": "Stocks",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("warehouse", "product"), name="uniq_stockitem_warehouse_product"
                    )
                ],
            },
        ),
    ]
