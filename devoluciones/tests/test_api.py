# devoluciones/tests/test_api.py
from __future__ import annotations

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from devoluciones.models import Devolucion
from facturacion.tests.helpers import crear_cliente, crear_entidades, crear_pedido, crear_producto


class DevolucionApiTests(TestCase):
    def setUp(self) -> None:
        self.user = get_user_model().objects.create_user(username="bodeguero", password="x")
        self.api = APIClient()
        self.api.force_authenticate(self.user)
        crear_entidades()
        self.cliente = crear_cliente()
        producto = crear_producto("A-1", "100.00")
        self.pedido = crear_pedido(self.cliente, [(producto, 5)])
        self.detalle = self.pedido.detalles.get()

    def _crear(self, cantidad: int):
        return self.api.post(
            reverse("devoluciones:devolucion-list"),
            {
                "tipo": Devolucion.Tipo.AJUSTE_PEDIDO,
                "pedido": self.pedido.pk,
                "motivo": "Cliente reduce el pedido",
                "detalles": [{"detalle_pedido": self.detalle.pk, "cantidad": cantidad}],
            },
            format="json",
        )

    def test_crear_y_aprobar(self):
        resp = self._crear(2)
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED, resp.data)
        self.assertEqual(resp.data["estado"], Devolucion.Estado.SOLICITADA)
        self.assertEqual(resp.data["solicitado_por"], self.user.pk)
        self.assertEqual(len(resp.data["detalles"]), 1)
        self.assertIsNone(resp.data["nota_credito"])

        resp = self.api.post(reverse("devoluciones:devolucion-aprobar", args=[resp.data["id"]]))

        self.assertEqual(resp.status_code, status.HTTP_200_OK, resp.data)
        self.assertEqual(resp.data["estado"], Devolucion.Estado.COMPLETADA)
        self.assertEqual(resp.data["aprobado_por"], self.user.pk)

    def test_cantidad_mayor_a_lo_pendiente(self):
        resp = self._crear(9)
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("pendientes", resp.data["detail"])

    def test_rechazar_y_filtrar(self):
        creada = self._crear(1).data

        resp = self.api.post(
            reverse("devoluciones:devolucion-rechazar", args=[creada["id"]]),
            {"motivo": "Sin stock"},
            format="json",
        )
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

        listado = self.api.get(reverse("devoluciones:devolucion-list"), {"estado": "rechazada"})
        self.assertEqual(listado.data["count"], 1)

        resp = self.api.post(reverse("devoluciones:devolucion-aprobar", args=[creada["id"]]))
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_requiere_autenticacion(self):
        resp = APIClient().get(reverse("devoluciones:devolucion-list"))
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
