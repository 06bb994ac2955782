# clientes/models.py
from django.db import models

from facturacion.utils import modulo11


class Cliente(models.Model):
    """
    Receptor de documentos electrónicos. Se lee (nunca se modifica) al armar
    el bloque gDatRec del DE.
    """

    NATURALEZA_CONTRIBUYENTE = 1
    NATURALEZA_NO_CONTRIBUYENTE = 2
    NATURALEZA_CHOICES = (
        (NATURALEZA_CONTRIBUYENTE, "Contribuyente"),
        (NATURALEZA_NO_CONTRIBUYENTE, "No contribuyente"),
    )

    ruc = models.CharField("RUC o documento", max_length=20, unique=True)
    razon_social = models.CharField("Razón social o nombre", max_length=255)
    naturaleza = models.PositiveSmallIntegerField(
        choices=NATURALEZA_CHOICES,
        default=NATURALEZA_CONTRIBUYENTE,
        help_text="iNatRec: 1 contribuyente (RUC), 2 no contribuyente.",
    )
    direccion = models.CharField(max_length=255, blank=True)
    ciudad = models.CharField(max_length=100, blank=True)
    telefono = models.CharField("Teléfono de contacto", max_length=20, blank=True)
    email = models.EmailField("Correo electrónico", blank=True)

    activo = models.BooleanField(default=True)

    creado = models.DateTimeField(auto_now_add=True)
    actualizado = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-actualizado"]
        verbose_name = "Cliente"
        verbose_name_plural = "Clientes"

    def __str__(self):
        return f"{self.razon_social} ({self.ruc})"

    @property
    def es_contribuyente(self) -> bool:
        return self.naturaleza == self.NATURALEZA_CONTRIBUYENTE

    @property
    def ruc_sin_dv(self) -> str:
        """
        RUC sin el dígito verificador (acepta '80012345-6' o '80012345').
        """
        return (self.ruc or "").split("-")[0].strip()

    @property
    def dv_ruc(self) -> int | None:
        """
        DV calculado con Módulo 11; None si el documento no es numérico.
        """
        base = self.ruc_sin_dv
        if not base.isdigit():
            return None
        return modulo11(base)
