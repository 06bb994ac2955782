from decimal import Decimal

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Producto",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("codigo", models.CharField(db_index=True, help_text="Código interno / SKU.", max_length=50, unique=True)),
                ("descripcion", models.CharField(max_length=300)),
                (
                    "unidad_medida",
                    models.PositiveSmallIntegerField(
                        default=77,
                        help_text="Código SIFEN de unidad de medida (77 = Unidad).",
                    ),
                ),
                ("precio", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                (
                    "tasa_iva",
                    models.PositiveSmallIntegerField(
                        choices=[(0, "Exento"), (5, "IVA 5%"), (10, "IVA 10%")],
                        default=10,
                    ),
                ),
                (
                    "es_servicio",
                    models.BooleanField(
                        default=False,
                        help_text="Los servicios no generan ingreso a bodega en devoluciones físicas.",
                    ),
                ),
                ("activo", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "productos_producto",
                "ordering": ["codigo"],
            },
        ),
    ]
