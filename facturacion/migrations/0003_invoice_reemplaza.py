import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("facturacion", "0002_invoice_devolucion"),
    ]

    operations = [
        migrations.AddField(
            model_name="invoice",
            name="reemplaza",
            field=models.OneToOneField(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="reemplazo",
                to="facturacion.invoice",
            ),
        ),
    ]
