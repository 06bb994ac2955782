# facturacion/pagination.py
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class FacturacionPagination(PageNumberPagination):
    """
    Paginador de listados de facturación y devoluciones.
    Tamaño por defecto desde REST_FRAMEWORK["PAGE_SIZE"]; ajustable con ?page_size=.
    """

    page_size_query_param = "page_size"
    max_page_size = 500

    def get_paginated_response(self, data):
        paginator = self.page.paginator
        return Response(
            {
                "count": paginator.count,
                "total_pages": paginator.num_pages,
                "current_page": self.page.number,
                "next": self.get_next_link(),
                "previous": self.get_previous_link(),
                "results": data,
            }
        )
