from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Cliente",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("ruc", models.CharField(max_length=20, unique=True, verbose_name="RUC o documento")),
                ("razon_social", models.CharField(max_length=255, verbose_name="Razón social o nombre")),
                (
                    "naturaleza",
                    models.PositiveSmallIntegerField(
                        choices=[(1, "Contribuyente"), (2, "No contribuyente")],
                        default=1,
                        help_text="iNatRec: 1 contribuyente (RUC), 2 no contribuyente.",
                    ),
                ),
                ("direccion", models.CharField(blank=True, max_length=255)),
                ("ciudad", models.CharField(blank=True, max_length=100)),
                ("telefono", models.CharField(blank=True, max_length=20, verbose_name="Teléfono de contacto")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="Correo electrónico")),
                ("activo", models.BooleanField(default=True)),
                ("creado", models.DateTimeField(auto_now_add=True)),
                ("actualizado", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Cliente",
                "verbose_name_plural": "Clientes",
                "ordering": ["-actualizado"],
            },
        ),
    ]
