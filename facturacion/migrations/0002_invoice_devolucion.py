import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("facturacion", "0001_initial"),
        ("devoluciones", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="invoice",
            name="devolucion",
            field=models.OneToOneField(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="nota_credito",
                to="devoluciones.devolucion",
            ),
        ),
    ]
