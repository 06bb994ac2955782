# facturacion/tests/test_utils_cdc.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import datetime

from django.test import SimpleTestCase

from facturacion.utils import (
    generar_cdc,
    generar_codigo_seguridad,
    modulo11,
    parse_cdc,
    validar_cdc,
)


class Modulo11Tests(SimpleTestCase):
    def test_ruc_conocido(self):
        # 5*2 + 4*3 + 3*4 + 2*5 + 1*6 + 0*7 + 0*2 + 8*3 = 74 -> 11 - (74 % 11) = 3
        self.assertEqual(modulo11("80012345"), 3)

    def test_resto_cero_da_cero(self):
        self.assertEqual(modulo11("0"), 0)

    def test_resto_uno_da_uno(self):
        # 6*2 = 12 -> 12 % 11 = 1 -> 11 - 1 = 10 -> 1
        self.assertEqual(modulo11("6"), 1)

    def test_rechaza_no_numericos(self):
        with self.assertRaises(ValueError):
            modulo11("80A12345")
        with self.assertRaises(ValueError):
            modulo11("")


class CDCTests(SimpleTestCase):
    def _cdc(self, **kwargs):
        datos = dict(
            ruc="80012345",
            establecimiento="001",
            punto_expedicion="001",
            tipo_documento="01",
            numero=1,
            fecha_emision=datetime.date(2024, 3, 15),
            codigo_seguridad="123456789",
            tipo_contribuyente="2",
        )
        datos.update(kwargs)
        return generar_cdc(**datos)

    def test_estructura_de_44_digitos(self):
        cdc = self._cdc()
        cuerpo = "80012345" "3" "001" "001" "01" "0000001" "2" "20240315" "1" "123456789"

        self.assertEqual(len(cdc), 44)
        self.assertTrue(cdc.startswith(cuerpo))
        self.assertEqual(cdc[-1], str(modulo11(cuerpo)))

    def test_es_determinista_con_mismo_codigo_de_seguridad(self):
        self.assertEqual(self._cdc(), self._cdc())

    def test_datetime_usa_solo_la_fecha(self):
        cdc = self._cdc(fecha_emision=datetime.datetime(2024, 3, 15, 23, 59))
        self.assertEqual(cdc, self._cdc())

    def test_nota_credito_usa_tipo_05(self):
        cdc = self._cdc(tipo_documento="05", numero=42)
        campos = parse_cdc(cdc)
        self.assertEqual(campos["tipo_documento"], "05")
        self.assertEqual(campos["numero"], "0000042")

    def test_parse_devuelve_campos_posicionales(self):
        campos = parse_cdc(self._cdc())
        self.assertEqual(campos["ruc"], "80012345")
        self.assertEqual(campos["dv_ruc"], "3")
        self.assertEqual(campos["establecimiento"], "001")
        self.assertEqual(campos["punto_expedicion"], "001")
        self.assertEqual(campos["tipo_contribuyente"], "2")
        self.assertEqual(campos["fecha"], "20240315")
        self.assertEqual(campos["tipo_emision"], "1")
        self.assertEqual(campos["codigo_seguridad"], "123456789")

    def test_validar_detecta_digito_alterado(self):
        cdc = self._cdc()
        self.assertTrue(validar_cdc(cdc))

        alterado = cdc[:20] + str((int(cdc[20]) + 1) % 10) + cdc[21:]
        self.assertFalse(validar_cdc(alterado))
        self.assertFalse(validar_cdc(cdc[:-1]))
        self.assertFalse(validar_cdc(None))
        with self.assertRaises(ValueError):
            parse_cdc(alterado)

    def test_campos_fuera_de_rango(self):
        with self.assertRaises(ValueError):
            self._cdc(ruc="800123456")
        with self.assertRaises(ValueError):
            self._cdc(numero=12345678)
        with self.assertRaises(ValueError):
            self._cdc(establecimiento="1A")

    def test_codigo_de_seguridad_aleatorio(self):
        codigo = generar_codigo_seguridad()
        self.assertEqual(len(codigo), 9)
        self.assertTrue(codigo.isdigit())
        self.assertEqual(len(self._cdc(codigo_seguridad=None)), 44)
