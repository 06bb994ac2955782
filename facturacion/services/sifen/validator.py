# facturacion/services/sifen/validator.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Set, Tuple, Union

from django.conf import settings
from lxml import etree

logger = logging.getLogger("facturacion.sifen")

# Evitar spam de logs repetitivos por el mismo problema (ruta, categoría)
_LOGGED_XSD_ISSUES: Set[Tuple[str, str]] = set()


def _resolve_xsd_path(xsd_path: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """
    Resuelve el XSD a usar: argumento explícito o setting SIFEN_XSD_PATH
    (relativo a BASE_DIR si no es absoluto).

    Devuelve None si no hay XSD configurado o el archivo no existe / está vacío.
    """
    configured = xsd_path or getattr(settings, "SIFEN_XSD_PATH", None)
    if not configured:
        return None

    path = Path(configured)
    if not path.is_absolute():
        path = Path(getattr(settings, "BASE_DIR", ".")) / path

    if not path.is_file():
        return None
    try:
        if path.stat().st_size <= 0:
            key = (str(path), "empty")
            if key not in _LOGGED_XSD_ISSUES:
                _LOGGED_XSD_ISSUES.add(key)
                logger.warning("El archivo XSD existe pero está vacío: %s", path)
            return None
    except OSError:
        return None
    return path


def get_xsd_schema(xsd_path: Optional[Union[str, Path]] = None) -> etree.XMLSchema:
    """
    Carga y devuelve el XMLSchema del DE.

    Puede lanzar FileNotFoundError o errores de lxml si el XSD es inválido;
    validate_xml decide si omite la validación.
    """
    path = _resolve_xsd_path(xsd_path)
    if path is None:
        raise FileNotFoundError(
            f"No se encontró el XSD de SIFEN (SIFEN_XSD_PATH={xsd_path or getattr(settings, 'SIFEN_XSD_PATH', None)!r})"
        )

    logger.info("Cargando XSD SIFEN desde %s", path)
    with path.open("rb") as f:
        schema_doc = etree.parse(f)
    return etree.XMLSchema(schema_doc)


def validate_xml(
    xml: Union[bytes, str],
    xsd_path: Optional[Union[str, Path]] = None,
) -> List[str]:
    """
    Valida un DE contra el XSD de SIFEN.

    Retorna:
    - Lista de errores de validación (strings). Vacía si es válido.
    - Si no hay XSD configurado o no se puede cargar, se omite la validación
      y se retorna una lista vacía para NO bloquear la emisión.
    - Un XML mal formado siempre se reporta como error.
    """
    if isinstance(xml, str):
        xml_bytes = xml.encode("utf-8")
    else:
        xml_bytes = xml

    # 1. Parsear XML
    try:
        doc = etree.fromstring(xml_bytes)
    except etree.XMLSyntaxError as exc:
        logger.error("XML mal formado al validar contra XSD: %s", exc)
        return [f"XML mal formado: {exc}"]

    # 2. Intentar cargar el esquema
    try:
        schema = get_xsd_schema(xsd_path)
    except FileNotFoundError as exc:
        key = ("__default__", "not_found")
        if key not in _LOGGED_XSD_ISSUES:
            _LOGGED_XSD_ISSUES.add(key)
            logger.warning("Se omite validación XSD: %s", exc)
        return []
    except (OSError, etree.XMLSchemaParseError, etree.XMLSyntaxError) as exc:
        key = ("__default__", "load_error")
        if key not in _LOGGED_XSD_ISSUES:
            _LOGGED_XSD_ISSUES.add(key)
            logger.error("Error cargando XSD de SIFEN. Se omite validación XSD. Detalle: %s", exc)
        return []

    # 3. Validar contra el esquema
    try:
        schema.assertValid(doc)
    except etree.DocumentInvalid as exc:
        errores = [
            f"Línea {error.line}, columna {error.column}: {error.message}"
            for error in exc.error_log
        ] or [str(exc)]
        logger.warning("Errores de validación XSD: %s", errores)
        return errores

    return []
