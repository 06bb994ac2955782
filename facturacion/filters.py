# facturacion/filters.py
from __future__ import annotations

import django_filters
from django.db.models import Q

from facturacion.models import Empresa, Invoice


class InvoiceFilter(django_filters.FilterSet):
    """
    Filtros para listar documentos electrónicos.

    - q: búsqueda por CDC, RUC o razón social del receptor, número de lote.
    - fecha_desde / fecha_hasta: sobre fecha_emision.
    - requiere_cancelacion: anulados localmente pendientes de cancelación en SIFEN.
    """

    q = django_filters.CharFilter(method="filter_q", label="Búsqueda general")
    fecha_desde = django_filters.DateFilter(field_name="fecha_emision", lookup_expr="date__gte")
    fecha_hasta = django_filters.DateFilter(field_name="fecha_emision", lookup_expr="date__lte")
    estado = django_filters.CharFilter(field_name="estado", lookup_expr="iexact")
    tipo_documento = django_filters.ChoiceFilter(choices=Invoice.TipoDocumento.choices)
    empresa = django_filters.ModelChoiceFilter(queryset=Empresa.objects.all())
    cliente = django_filters.NumberFilter(field_name="cliente_id")
    pedido = django_filters.NumberFilter(field_name="pedido_id")
    numero_lote = django_filters.CharFilter(field_name="numero_lote")
    requiere_cancelacion = django_filters.BooleanFilter(field_name="requiere_cancelacion_sifen")

    class Meta:
        model = Invoice
        fields = [
            "q",
            "fecha_desde",
            "fecha_hasta",
            "estado",
            "tipo_documento",
            "empresa",
            "cliente",
            "pedido",
            "numero_lote",
            "requiere_cancelacion",
        ]

    def filter_q(self, queryset, name, value):
        if not value:
            return queryset

        value = value.strip()
        return queryset.filter(
            Q(cdc__icontains=value)
            | Q(ruc_receptor__icontains=value)
            | Q(razon_social_receptor__icontains=value)
            | Q(numero_lote__icontains=value)
        )
