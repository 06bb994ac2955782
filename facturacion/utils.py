# facturacion/utils.py

"""
Utilidades comunes para documentos electrónicos SIFEN:

- modulo11: dígito verificador (RUC y CDC).
- generar_codigo_seguridad: código de seguridad aleatorio de 9 dígitos.
- generar_cdc: genera el Código de Control (CDC) de 44 dígitos.
- validar_cdc / parse_cdc: verificación y lectura posicional de un CDC.

Estas funciones NO dependen de Django, salvo por types de fecha.
IMPORTANTE: No importar modelos ni servicios aquí para evitar imports circulares.
"""

from __future__ import annotations

import re
import secrets
from datetime import date, datetime
from typing import Dict, Union


FechaTipo = Union[date, datetime]

CDC_LONGITUD = 44

# (campo, inicio, fin) dentro del CDC
CDC_CAMPOS = (
    ("ruc", 0, 8),
    ("dv_ruc", 8, 9),
    ("establecimiento", 9, 12),
    ("punto_expedicion", 12, 15),
    ("tipo_documento", 15, 17),
    ("numero", 17, 24),
    ("tipo_contribuyente", 24, 25),
    ("fecha", 25, 33),
    ("tipo_emision", 33, 34),
    ("codigo_seguridad", 34, 43),
    ("dv", 43, 44),
)


def generar_codigo_seguridad(longitud: int = 9) -> str:
    """
    Genera el código de seguridad aleatorio (9 dígitos) que forma parte del CDC.
    """
    if longitud <= 0:
        raise ValueError("La longitud del código de seguridad debe ser mayor a 0.")
    return "".join(str(secrets.randbelow(10)) for _ in range(longitud))


def modulo11(numero: str) -> int:
    """
    Calcula el dígito verificador Módulo 11 (RUC y CDC).

    Algoritmo:
    - Se toman los dígitos de derecha a izquierda.
    - Se multiplican por la secuencia de factores: 2, 3, 4, 5, 6, 7 (y se repite).
    - Se suma el resultado de las multiplicaciones.
    - DV = 11 - (suma % 11).
      - Si DV == 11 -> DV = 0
      - Si DV == 10 -> DV = 1

    :param numero: cadena de dígitos sobre la cual se calcula el DV.
    :return: dígito verificador (0–9).
    """
    if not numero or not numero.isdigit():
        raise ValueError("El número para módulo 11 debe contener solo dígitos.")

    factores = [2, 3, 4, 5, 6, 7]

    suma = 0
    for i, digito_char in enumerate(reversed(numero)):
        suma += int(digito_char) * factores[i % len(factores)]

    dv = 11 - (suma % 11)
    if dv == 11:
        dv = 0
    elif dv == 10:
        dv = 1
    return dv


def _campo_numerico(valor: Union[str, int], ancho: int, nombre: str) -> str:
    """
    Normaliza un campo numérico a `ancho` dígitos con ceros a la izquierda.
    """
    texto = str(valor).strip().replace("-", "")
    if not texto.isdigit():
        raise ValueError(f"{nombre} debe contener solo dígitos (recibido {valor!r}).")
    if len(texto) > ancho:
        raise ValueError(f"{nombre} excede {ancho} dígitos (recibido {valor!r}).")
    return texto.zfill(ancho)


def generar_cdc(
    ruc: str,
    establecimiento: Union[str, int],
    punto_expedicion: Union[str, int],
    tipo_documento: Union[str, int],
    numero: Union[str, int],
    fecha_emision: FechaTipo,
    tipo_emision: Union[str, int] = "1",
    codigo_seguridad: str | None = None,
    tipo_contribuyente: Union[str, int] = "2",
) -> str:
    """
    Genera el Código de Control (CDC) SIFEN de 44 dígitos.

    Estructura:
    - RUC del emisor                              -> 8 dígitos
    - DV del RUC                                  -> 1 dígito
    - Establecimiento                             -> 3 dígitos
    - Punto de expedición                         -> 3 dígitos
    - Tipo de documento (01 factura, 05 NC, ...)  -> 2 dígitos
    - Número del documento                        -> 7 dígitos
    - Tipo de contribuyente (1 física, 2 jurídica)-> 1 dígito
    - Fecha de emisión (aaaammdd)                 -> 8 dígitos
    - Tipo de emisión (1 normal, 2 contingencia)  -> 1 dígito
    - Código de seguridad                         -> 9 dígitos
    - Dígito verificador (Módulo 11)              -> 1 dígito
    """
    ruc_str = _campo_numerico(ruc, 8, "ruc")
    if codigo_seguridad is None:
        codigo_seguridad = generar_codigo_seguridad()

    if isinstance(fecha_emision, datetime):
        fecha_emision = fecha_emision.date()

    tipo_emision = str(tipo_emision).strip()
    if not re.fullmatch(r"\d", tipo_emision):
        raise ValueError("tipo_emision debe ser un dígito (ej. '1').")

    cuerpo = (
        ruc_str
        + str(modulo11(ruc_str))
        + _campo_numerico(establecimiento, 3, "establecimiento")
        + _campo_numerico(punto_expedicion, 3, "punto_expedicion")
        + _campo_numerico(tipo_documento, 2, "tipo_documento")
        + _campo_numerico(numero, 7, "numero")
        + _campo_numerico(tipo_contribuyente, 1, "tipo_contribuyente")
        + fecha_emision.strftime("%Y%m%d")
        + tipo_emision
        + _campo_numerico(codigo_seguridad, 9, "codigo_seguridad")
    )

    cdc = cuerpo + str(modulo11(cuerpo))

    if len(cdc) != CDC_LONGITUD:
        raise ValueError(
            f"El CDC debe tener {CDC_LONGITUD} dígitos, pero se generó con {len(cdc)}."
        )
    return cdc


def validar_cdc(cdc: str | None) -> bool:
    """
    True si el CDC tiene 44 dígitos y ambos dígitos verificadores cuadran.
    """
    if not cdc or len(cdc) != CDC_LONGITUD or not cdc.isdigit():
        return False
    if modulo11(cdc[:8]) != int(cdc[8]):
        return False
    return modulo11(cdc[:-1]) == int(cdc[-1])


def parse_cdc(cdc: str) -> Dict[str, str]:
    """
    Descompone un CDC en sus campos posicionales. Lanza ValueError si no es válido.
    """
    if not validar_cdc(cdc):
        raise ValueError(f"CDC inválido: {cdc!r}")
    return {nombre: cdc[inicio:fin] for nombre, inicio, fin in CDC_CAMPOS}
