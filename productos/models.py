# productos/models.py
from __future__ import annotations

from decimal import Decimal
from django.db import models


class Producto(models.Model):
    """
    Catálogo mínimo de productos/servicios facturables.
    Las líneas de factura y devolución guardan snapshot de descripción y precio.
    """

    TASA_IVA_CHOICES = (
        (0, "Exento"),
        (5, "IVA 5%"),
        (10, "IVA 10%"),
    )

    # ======== Código interno (único) ========
    codigo = models.CharField(
        max_length=50,
        unique=True,
        db_index=True,
        help_text="Código interno / SKU.",
    )
    descripcion = models.CharField(max_length=300)
    unidad_medida = models.PositiveSmallIntegerField(
        default=77,
        help_text="Código SIFEN de unidad de medida (77 = Unidad).",
    )
    precio = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tasa_iva = models.PositiveSmallIntegerField(choices=TASA_IVA_CHOICES, default=10)
    es_servicio = models.BooleanField(
        default=False,
        help_text="Los servicios no generan ingreso a bodega en devoluciones físicas.",
    )

    activo = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "productos_producto"
        ordering = ["codigo"]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.codigo} – {self.descripcion}"
