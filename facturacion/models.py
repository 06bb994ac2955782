# facturacion/models.py
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models, transaction

from facturacion.utils import modulo11


class Empresa(models.Model):
    """
    Representa un emisor SIFEN (RUC).
    Maneja datos del bloque gEmis, timbrado, ambiente y certificado de firma.
    """

    AMBIENTE_PRUEBAS = "1"
    AMBIENTE_PRODUCCION = "2"
    AMBIENTE_CHOICES = (
        (AMBIENTE_PRUEBAS, "Pruebas"),
        (AMBIENTE_PRODUCCION, "Producción"),
    )

    TIPO_CONTRIBUYENTE_CHOICES = (
        ("1", "Persona física"),
        ("2", "Persona jurídica"),
    )

    # ----- Datos obligatorios SIFEN -----
    ruc = models.CharField(
        max_length=8,
        unique=True,
        help_text="RUC del emisor sin dígito verificador (hasta 8 dígitos).",
    )
    razon_social = models.CharField(max_length=255)
    nombre_fantasia = models.CharField(max_length=255, blank=True)
    tipo_contribuyente = models.CharField(
        max_length=1,
        choices=TIPO_CONTRIBUYENTE_CHOICES,
        default="2",
    )
    direccion = models.CharField(max_length=255, blank=True)
    numero_casa = models.CharField(max_length=10, default="0")
    departamento_codigo = models.PositiveSmallIntegerField(default=1)
    departamento = models.CharField(max_length=64, default="CAPITAL")
    ciudad_codigo = models.PositiveIntegerField(default=1)
    ciudad = models.CharField(max_length=64, default="ASUNCION (DISTRITO)")
    telefono = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    actividad_economica_codigo = models.CharField(max_length=8, blank=True)
    actividad_economica = models.CharField(max_length=255, blank=True)

    # ----- Timbrado -----
    timbrado = models.CharField(
        max_length=8,
        blank=True,
        help_text="Número de timbrado vigente (dNumTim).",
    )
    timbrado_inicio = models.DateField(null=True, blank=True)

    # ----- Ambiente SIFEN -----
    ambiente = models.CharField(
        max_length=1,
        choices=AMBIENTE_CHOICES,
        default=AMBIENTE_PRUEBAS,
        help_text="Ambiente para envío a SIFEN (1=Pruebas, 2=Producción).",
    )

    # ----- Certificado de firma electrónica -----
    certificado = models.FileField(
        upload_to="facturacion/certificados/",
        null=True,
        blank=True,
        help_text="Archivo .p12/.pfx con el certificado de firma electrónica.",
    )
    certificado_password = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Contraseña del certificado (idealmente gestionada por un vault).",
    )

    # ----- Estado -----
    is_active = models.BooleanField(
        default=True,
        help_text="Si está desactivada, la empresa no puede emitir nuevos documentos.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Empresa emisora"
        verbose_name_plural = "Empresas emisoras"

    def __str__(self) -> str:
        return f"{self.razon_social} ({self.ruc}-{self.dv_ruc})"

    @property
    def dv_ruc(self) -> int:
        """
        Dígito verificador del RUC, siempre derivado con Módulo 11.
        """
        return modulo11(self.ruc)


class Establecimiento(models.Model):
    """
    Establecimiento SIFEN (3 dígitos).
    """

    empresa = models.ForeignKey(
        Empresa,
        related_name="establecimientos",
        on_delete=models.CASCADE,
    )
    codigo = models.CharField(
        max_length=3,
        help_text="Código de establecimiento (3 dígitos, ej. '001').",
    )
    nombre = models.CharField(max_length=255, blank=True)
    direccion = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Establecimiento"
        verbose_name_plural = "Establecimientos"
        unique_together = (("empresa", "codigo"),)

    def __str__(self) -> str:
        return f"{self.empresa.ruc} - {self.codigo} - {self.nombre or self.direccion}"


class PuntoEmision(models.Model):
    """
    Punto de expedición SIFEN (3 dígitos) asociado a un establecimiento.
    Contiene contadores durables de numeración por tipo de documento.
    """

    establecimiento = models.ForeignKey(
        Establecimiento,
        related_name="puntos_emision",
        on_delete=models.CASCADE,
    )
    codigo = models.CharField(
        max_length=3,
        help_text="Código de punto de expedición (3 dígitos, ej. '001').",
    )
    descripcion = models.CharField(max_length=255, blank=True)

    # Contadores de numeración (dNumDoc, 7 dígitos)
    secuencial_factura = models.PositiveIntegerField(default=0)
    secuencial_nota_credito = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Punto de expedición"
        verbose_name_plural = "Puntos de expedición"
        unique_together = (("establecimiento", "codigo"),)

    def __str__(self) -> str:
        return (
            f"{self.establecimiento.empresa.ruc} - "
            f"{self.establecimiento.codigo}-{self.codigo}"
        )

    @classmethod
    def reservar_secuencial(cls, punto_id: int, campo: str) -> int:
        """
        Incrementa atómicamente el contador `campo` y retorna el nuevo valor.
        """
        with transaction.atomic():
            punto = cls.objects.select_for_update().get(pk=punto_id)
            valor = getattr(punto, campo) + 1
            setattr(punto, campo, valor)
            punto.save(update_fields=[campo, "updated_at"])
        return valor


class Secuencia(models.Model):
    """
    Contador durable con nombre (ej. numeración de devoluciones 'DEV-000001').
    """

    nombre = models.CharField(max_length=50, unique=True)
    valor = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = "Secuencia"
        verbose_name_plural = "Secuencias"

    def __str__(self) -> str:
        return f"{self.nombre}={self.valor}"

    @classmethod
    def siguiente(cls, nombre: str) -> int:
        """
        Retorna el siguiente valor de la secuencia, creando la fila si no existe.
        """
        with transaction.atomic():
            cls.objects.get_or_create(nombre=nombre)
            fila = cls.objects.select_for_update().get(nombre=nombre)
            fila.valor += 1
            fila.save(update_fields=["valor"])
        return fila.valor


class Invoice(models.Model):
    """
    Documento electrónico SIFEN: factura o nota de crédito.
    """

    class Estado(models.TextChoices):
        BORRADOR = "BORRADOR", "Borrador"
        GENERADA = "GENERADA", "XML generado"
        ENVIADA = "ENVIADA", "Enviada a SIFEN"
        APROBADA = "APROBADA", "Aprobada por SIFEN"
        RECHAZADA = "RECHAZADA", "Rechazada por SIFEN"
        PAGADA = "PAGADA", "Pagada"
        PAGADA_PARCIAL = "PAGADA_PARCIAL", "Pagada parcialmente"
        ANULADA = "ANULADA", "Anulada"

    class TipoDocumento(models.TextChoices):
        # Valor = iTiDE; en el CDC se usa con 2 dígitos
        FACTURA = "1", "Factura electrónica"
        NOTA_CREDITO = "5", "Nota de crédito electrónica"

    # Estados en los que ya existe respuesta positiva de SIFEN
    ESTADOS_APROBADOS = (Estado.APROBADA, Estado.PAGADA, Estado.PAGADA_PARCIAL)

    estado = models.CharField(
        max_length=20,
        choices=Estado.choices,
        default=Estado.BORRADOR,
        db_index=True,
    )
    tipo_documento = models.CharField(
        max_length=1,
        choices=TipoDocumento.choices,
        default=TipoDocumento.FACTURA,
    )

    # Relaciones principales
    empresa = models.ForeignKey(
        Empresa,
        related_name="invoices",
        on_delete=models.PROTECT,
    )
    establecimiento = models.ForeignKey(
        Establecimiento,
        related_name="invoices",
        on_delete=models.PROTECT,
    )
    punto_emision = models.ForeignKey(
        PuntoEmision,
        related_name="invoices",
        on_delete=models.PROTECT,
    )
    cliente = models.ForeignKey(
        "clientes.Cliente",
        related_name="invoices",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    pedido = models.ForeignKey(
        "pedidos.Pedido",
        related_name="invoices",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )

    # Solo notas de crédito
    factura_original = models.ForeignKey(
        "self",
        related_name="notas_credito",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    devolucion = models.OneToOneField(
        "devoluciones.Devolucion",
        related_name="nota_credito",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    # Documento rechazado por SIFEN que este documento reemplaza (nuevo CDC)
    reemplaza = models.OneToOneField(
        "self",
        related_name="reemplazo",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    motivo_emision = models.PositiveSmallIntegerField(
        default=2,
        help_text="iMotEmi de la nota de crédito (2 = Devolución).",
    )

    # Numeración (dNumDoc, sin ceros a la izquierda)
    secuencial = models.PositiveIntegerField(null=True, blank=True)
    fecha_emision = models.DateTimeField()
    moneda = models.CharField(max_length=3, default="PYG")

    # Datos del receptor (snapshot)
    ruc_receptor = models.CharField(max_length=20, blank=True)
    razon_social_receptor = models.CharField(max_length=255, blank=True)
    direccion_receptor = models.CharField(max_length=255, blank=True)
    telefono_receptor = models.CharField(max_length=32, blank=True)
    email_receptor = models.EmailField(blank=True)

    # Totales (siempre derivados de las líneas)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_iva5 = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_iva10 = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_iva = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_descuento = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    monto_pagado = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    saldo = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    # SIFEN
    cdc = models.CharField(max_length=44, unique=True, null=True, blank=True)
    codigo_seguridad = models.CharField(max_length=9, blank=True)
    xml_generado = models.TextField(null=True, blank=True)
    xml_firmado = models.TextField(null=True, blank=True)
    codigo_respuesta = models.CharField(max_length=10, blank=True)
    mensaje_respuesta = models.TextField(blank=True)
    protocolo_autorizacion = models.CharField(max_length=64, blank=True)
    respuesta_raw = models.TextField(blank=True)
    numero_lote = models.CharField(max_length=64, blank=True, db_index=True)
    qr_url = models.TextField(blank=True)
    qr_imagen = models.TextField(blank=True, help_text="data:image/png;base64,...")

    # Mensajes de respuesta SIFEN / workflow (JSON serializable)
    mensajes_sifen = models.JSONField(default=list, blank=True)

    fecha_envio = models.DateTimeField(null=True, blank=True)
    fecha_aprobacion = models.DateTimeField(null=True, blank=True)

    # Anulación
    anulada_at = models.DateTimeField(null=True, blank=True)
    motivo_anulacion = models.TextField(blank=True)
    requiere_cancelacion_sifen = models.BooleanField(
        default=False,
        help_text="Aprobada con CDC y anulada localmente: cancelar manualmente en SIFEN.",
    )

    observaciones = models.TextField(blank=True)

    # Auditoría
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="invoices_created",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    class Meta:
        verbose_name = "Documento electrónico"
        verbose_name_plural = "Documentos electrónicos"
        unique_together = (("punto_emision", "tipo_documento", "secuencial"),)
        indexes = [
            models.Index(
                fields=["empresa", "estado", "fecha_emision"],
                name="inv_emp_estado_fecha_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_tipo_documento_display()} {self.numero_display} - {self.razon_social_receptor}"

    @property
    def es_nota_credito(self) -> bool:
        return self.tipo_documento == self.TipoDocumento.NOTA_CREDITO

    @property
    def tipo_documento_cdc(self) -> str:
        """
        Tipo de documento con 2 dígitos para el CDC ('01', '05').
        """
        return f"{int(self.tipo_documento):02d}"

    @property
    def numero_display(self) -> str:
        """
        Representación 'EEE-PPP-NNNNNNN'.
        """
        numero = f"{self.secuencial:07d}" if self.secuencial else "-------"
        return f"{self.establecimiento.codigo}-{self.punto_emision.codigo}-{numero}"

    @property
    def esta_aprobada(self) -> bool:
        return self.estado in self.ESTADOS_APROBADOS


class InvoiceLine(models.Model):
    """
    Línea de detalle de un documento electrónico.
    subtotal/iva/total se recalculan con services.totales.calcular_linea().
    """

    TASA_IVA_CHOICES = (
        (0, "Exento"),
        (5, "IVA 5%"),
        (10, "IVA 10%"),
    )

    invoice = models.ForeignKey(
        Invoice,
        related_name="lines",
        on_delete=models.CASCADE,
    )
    producto = models.ForeignKey(
        "productos.Producto",
        related_name="invoice_lines",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    detalle_pedido = models.ForeignKey(
        "pedidos.DetallePedido",
        related_name="invoice_lines",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )

    codigo = models.CharField(max_length=50, blank=True)
    descripcion = models.CharField(max_length=300)
    unidad_medida = models.PositiveSmallIntegerField(default=77)

    cantidad = models.DecimalField(max_digits=14, decimal_places=4)
    precio_unitario = models.DecimalField(max_digits=14, decimal_places=2)
    descuento = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tasa_iva = models.PositiveSmallIntegerField(choices=TASA_IVA_CHOICES, default=10)

    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    iva = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        verbose_name = "Línea de documento"
        verbose_name_plural = "Líneas de documento"
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.descripcion} x {self.cantidad}"


class Pago(models.Model):
    """
    Pago registrado sobre una factura aprobada.
    """

    class Metodo(models.TextChoices):
        EFECTIVO = "EFECTIVO", "Efectivo"
        TRANSFERENCIA = "TRANSFERENCIA", "Transferencia"
        TARJETA = "TARJETA", "Tarjeta"
        CHEQUE = "CHEQUE", "Cheque"
        OTRO = "OTRO", "Otro"

    invoice = models.ForeignKey(
        Invoice,
        related_name="pagos",
        on_delete=models.PROTECT,
    )
    monto = models.DecimalField(max_digits=14, decimal_places=2)
    metodo = models.CharField(max_length=20, choices=Metodo.choices, default=Metodo.EFECTIVO)
    referencia = models.CharField(max_length=255, blank=True)
    fecha = models.DateTimeField(auto_now_add=True)
    registrado_por = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="pagos_registrados",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    class Meta:
        verbose_name = "Pago"
        verbose_name_plural = "Pagos"
        ordering = ["fecha", "id"]

    def __str__(self) -> str:
        return f"Pago {self.monto} ({self.metodo}) factura {self.invoice_id}"
