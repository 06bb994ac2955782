# facturacion/services/sifen/xml_invoice_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import copy
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Tuple

import pytz
from django.conf import settings
from django.utils import timezone
from lxml import etree

from facturacion.exceptions import WorkflowError
from facturacion.models import Invoice, InvoiceLine
from facturacion.services.totales import calcular_linea
from facturacion.utils import parse_cdc, validar_cdc

logger = logging.getLogger("facturacion.sifen")

SIFEN_NS = "http://ekuatia.set.gov.py/sifen/xsd"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

SIFEN_VERSION_FORMATO = str(getattr(settings, "SIFEN_VERSION_FORMATO", "150"))
SIFEN_TIMEZONE = getattr(settings, "SIFEN_TIMEZONE", "America/Asuncion")

DESCRIPCION_TIPO_DE = {
    "1": "Factura electrónica",
    "5": "Nota de crédito electrónica",
}

DESCRIPCION_MOTIVO_NC = {
    1: "Devolución y Ajuste de precios",
    2: "Devolución",
    3: "Descuento",
    4: "Bonificación",
    5: "Crédito incobrable",
    6: "Recupero de costo",
    7: "Recupero de gasto",
    8: "Ajuste de precio",
}

DESCRIPCION_MONEDA = {
    "PYG": "Guarani",
    "USD": "US Dollar",
}

# Acumulados de gTotSub
CAMPOS_ACUMULADOS = (
    "exento",
    "gravado5",
    "gravado10",
    "base5",
    "base10",
    "bruto",
    "descuento",
    "iva5",
    "iva10",
    "iva",
    "total_items",
)


class XMLBuildError(ValueError):
    """Datos faltantes o inconsistentes al armar el DE. Se lanza antes de cualquier envío."""


def _q(tag: str) -> str:
    return f"{{{SIFEN_NS}}}{tag}"


def _sub(parent: etree._Element, tag: str, text: object | None = None) -> etree._Element:
    elem = etree.SubElement(parent, _q(tag))
    if text is not None:
        elem.text = str(text)
    return elem


def _format_decimal(value: Decimal | float | int | None, pattern: str = "0.00") -> str:
    """
    Formatea un número según el patrón indicado.

    - montos: 2 decimales (pattern="0.00")
    - cantidades: 4 decimales (pattern="0.0000")
    """
    if value is None:
        value = Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))

    if pattern == "0.00":
        return f"{value.quantize(Decimal('0.01')):.2f}"
    if pattern == "0.0000":
        return f"{value.quantize(Decimal('0.0001')):.4f}"
    return str(value)


def _fecha_local(fecha: date | datetime) -> datetime:
    """
    Lleva la fecha a la hora local de Paraguay. Una fecha naive se toma tal cual.
    """
    if fecha is None:
        raise XMLBuildError("fecha_emision no puede ser None al construir el XML.")
    if isinstance(fecha, datetime):
        if timezone.is_aware(fecha):
            return fecha.astimezone(pytz.timezone(SIFEN_TIMEZONE))
        return fecha
    if isinstance(fecha, date):
        return datetime(fecha.year, fecha.month, fecha.day)
    raise XMLBuildError(
        f"fecha_emision debe ser date o datetime, no {type(fecha)!r}"
    )


def _format_fecha_hora(fecha: date | datetime) -> str:
    return _fecha_local(fecha).strftime("%Y-%m-%dT%H:%M:%S")


def _split_ruc(ruc: str) -> Tuple[str, str]:
    """
    '80012345-6' -> ('80012345', '6'). Sin guion, DV vacío.
    """
    partes = (ruc or "").strip().split("-")
    if len(partes) == 2:
        return partes[0], partes[1]
    return partes[0], ""


# =============================================================================
# Validación previa
# =============================================================================

def _validar_datos_obligatorios(invoice: Invoice, lineas: List[InvoiceLine]) -> None:
    empresa = invoice.empresa
    errores: List[str] = []

    if not (empresa.ruc or "").strip():
        errores.append("RUC del emisor vacío")
    if not (empresa.razon_social or "").strip():
        errores.append("razón social del emisor vacía")
    if not (empresa.direccion or "").strip():
        errores.append("dirección del emisor vacía")
    if not (empresa.timbrado or "").strip():
        errores.append("timbrado del emisor vacío")
    if not (invoice.razon_social_receptor or "").strip():
        errores.append("nombre del receptor vacío")
    if not lineas:
        errores.append("el documento no tiene líneas")
    if not invoice.secuencial:
        errores.append("el documento no tiene número asignado")

    if not invoice.cdc:
        errores.append("el documento no tiene CDC")
    elif not validar_cdc(invoice.cdc):
        errores.append(f"CDC inválido: {invoice.cdc}")

    if invoice.es_nota_credito:
        original = invoice.factura_original
        if original is None:
            errores.append("la nota de crédito no referencia la factura original")
        elif not original.cdc:
            errores.append("la factura original no tiene CDC")
        elif invoice.total > original.total:
            errores.append(
                f"el total de la nota de crédito ({invoice.total}) supera el de la "
                f"factura original ({original.total})"
            )
        if not invoice.devolucion_id:
            errores.append("la nota de crédito no referencia la devolución")

    if errores:
        raise XMLBuildError(
            f"Documento {invoice.pk}: datos obligatorios faltantes o inválidos: "
            + "; ".join(errores)
        )


# =============================================================================
# Bloques del DE
# =============================================================================

def _build_g_ope_de(invoice: Invoice) -> etree._Element:
    campos = parse_cdc(invoice.cdc)
    g_ope = etree.Element(_q("gOpeDE"))
    _sub(g_ope, "iTipEmi", campos["tipo_emision"])
    _sub(g_ope, "dDesTipEmi", "Normal" if campos["tipo_emision"] == "1" else "Contingencia")
    _sub(g_ope, "dCodSeg", campos["codigo_seguridad"])
    if invoice.observaciones:
        _sub(g_ope, "dInfoEmi", invoice.observaciones[:3000])
    return g_ope


def _build_g_timb(invoice: Invoice) -> etree._Element:
    empresa = invoice.empresa
    g_timb = etree.Element(_q("gTimb"))
    _sub(g_timb, "iTiDE", invoice.tipo_documento)
    _sub(g_timb, "dDesTiDE", DESCRIPCION_TIPO_DE[str(invoice.tipo_documento)])
    _sub(g_timb, "dNumTim", empresa.timbrado)
    _sub(g_timb, "dEst", invoice.establecimiento.codigo.zfill(3))
    _sub(g_timb, "dPunExp", invoice.punto_emision.codigo.zfill(3))
    _sub(g_timb, "dNumDoc", f"{int(invoice.secuencial):07d}")
    if empresa.timbrado_inicio:
        _sub(g_timb, "dFeIniT", empresa.timbrado_inicio.isoformat())
    return g_timb


def _build_g_emis(invoice: Invoice) -> etree._Element:
    empresa = invoice.empresa
    g_emis = etree.Element(_q("gEmis"))
    _sub(g_emis, "dRucEm", empresa.ruc)
    _sub(g_emis, "dDVEmi", empresa.dv_ruc)
    _sub(g_emis, "iTipCont", empresa.tipo_contribuyente)
    _sub(g_emis, "dNomEmi", empresa.razon_social)
    if empresa.nombre_fantasia:
        _sub(g_emis, "dNomFanEmi", empresa.nombre_fantasia)
    _sub(g_emis, "dDirEmi", empresa.direccion)
    _sub(g_emis, "dNumCas", empresa.numero_casa or "0")
    _sub(g_emis, "cDepEmi", empresa.departamento_codigo)
    _sub(g_emis, "dDesDepEmi", empresa.departamento)
    _sub(g_emis, "cCiuEmi", empresa.ciudad_codigo)
    _sub(g_emis, "dDesCiuEmi", empresa.ciudad)
    if empresa.telefono:
        _sub(g_emis, "dTelEmi", empresa.telefono)
    if empresa.email:
        _sub(g_emis, "dEmailE", empresa.email)
    if empresa.actividad_economica_codigo:
        g_act = _sub(g_emis, "gActEco")
        _sub(g_act, "cActEco", empresa.actividad_economica_codigo)
        _sub(g_act, "dDesActEco", empresa.actividad_economica)
    return g_emis


def _receptor_es_contribuyente(invoice: Invoice) -> bool:
    if invoice.cliente_id:
        return invoice.cliente.es_contribuyente
    return "-" in (invoice.ruc_receptor or "")


def _build_g_dat_rec(invoice: Invoice) -> etree._Element:
    """
    Bloque gDatRec con el snapshot del receptor guardado en el documento.
    """
    contribuyente = _receptor_es_contribuyente(invoice)
    ruc, dv = _split_ruc(invoice.ruc_receptor)

    g_rec = etree.Element(_q("gDatRec"))
    _sub(g_rec, "iNatRec", 1 if contribuyente else 2)
    _sub(g_rec, "iTiOpe", 1 if contribuyente else 2)
    _sub(g_rec, "cPaisRec", "PRY")
    _sub(g_rec, "dDesPaisRe", "Paraguay")
    if contribuyente:
        if not dv and invoice.cliente_id and invoice.cliente.dv_ruc is not None:
            dv = str(invoice.cliente.dv_ruc)
        _sub(g_rec, "iTiContRec", 2 if len(ruc) >= 8 else 1)
        _sub(g_rec, "dRucRec", ruc)
        _sub(g_rec, "dDVRec", dv)
    else:
        if ruc:
            _sub(g_rec, "iTipIDRec", 1)
            _sub(g_rec, "dDTipIDRec", "Cédula paraguaya")
            _sub(g_rec, "dNumIDRec", ruc)
        else:
            _sub(g_rec, "iTipIDRec", 5)
            _sub(g_rec, "dDTipIDRec", "Innominado")
            _sub(g_rec, "dNumIDRec", "0")
    _sub(g_rec, "dNomRec", invoice.razon_social_receptor)
    if invoice.direccion_receptor:
        _sub(g_rec, "dDirRec", invoice.direccion_receptor)
        _sub(g_rec, "dNumCasRec", "0")
    if invoice.telefono_receptor:
        _sub(g_rec, "dTelRec", invoice.telefono_receptor)
    if invoice.email_receptor:
        _sub(g_rec, "dEmailRec", invoice.email_receptor)
    return g_rec


def _build_g_dat_gral_ope(invoice: Invoice) -> etree._Element:
    g_gral = etree.Element(_q("gDatGralOpe"))
    _sub(g_gral, "dFeEmiDE", _format_fecha_hora(invoice.fecha_emision))

    g_com = _sub(g_gral, "gOpeCom")
    if not invoice.es_nota_credito:
        _sub(g_com, "iTipTra", 1)
        _sub(g_com, "dDesTipTra", "Venta de mercadería")
    _sub(g_com, "iTImp", 1)
    _sub(g_com, "dDesTImp", "IVA")
    _sub(g_com, "cMoneOpe", invoice.moneda)
    _sub(g_com, "dDesMoneOpe", DESCRIPCION_MONEDA.get(invoice.moneda, invoice.moneda))

    g_gral.append(_build_g_emis(invoice))
    g_gral.append(_build_g_dat_rec(invoice))
    return g_gral


def _build_g_cam_item(numero: int, linea: InvoiceLine, acumulado: Dict[str, Decimal]) -> etree._Element:
    """
    Bloque gCamItem de una línea. Los valores se recalculan aquí y se suman a
    `acumulado`, que luego alimenta gTotSub.
    """
    try:
        valores = calcular_linea(copy.copy(linea))
    except WorkflowError as exc:
        raise XMLBuildError(f"Línea {numero} inválida: {exc}") from exc

    tasa = int(valores.tasa_iva)
    base = valores.subtotal - valores.descuento

    item = etree.Element(_q("gCamItem"))
    _sub(item, "dCodInt", linea.codigo or str(numero))
    _sub(item, "dNroItem", numero)
    _sub(item, "dDesProSer", linea.descripcion)
    _sub(item, "cUniMed", linea.unidad_medida)
    _sub(item, "dDesUniMed", "UNI" if linea.unidad_medida == 77 else str(linea.unidad_medida))
    _sub(item, "dCantProSer", _format_decimal(valores.cantidad, "0.0000"))

    g_valor = _sub(item, "gValorItem")
    _sub(g_valor, "dPUniProSer", _format_decimal(valores.precio_unitario))
    _sub(g_valor, "dTotBruOpeItem", _format_decimal(valores.subtotal))
    g_resta = _sub(g_valor, "gValorRestaItem")
    _sub(g_resta, "dDescItem", _format_decimal(valores.descuento))
    _sub(g_resta, "dTotOpeItem", _format_decimal(valores.total))

    g_iva = _sub(item, "gCamIVA")
    _sub(g_iva, "iAfecIVA", 1 if tasa else 3)
    _sub(g_iva, "dDesAfecIVA", "Gravado IVA" if tasa else "Exento")
    _sub(g_iva, "dPropIVA", 100)
    _sub(g_iva, "dTasaIVA", tasa)
    _sub(g_iva, "dBasGravIVA", _format_decimal(base if tasa else Decimal("0.00")))
    _sub(g_iva, "dLiqIVAItem", _format_decimal(valores.iva))

    acumulado["bruto"] += valores.subtotal
    acumulado["descuento"] += valores.descuento
    acumulado["iva"] += valores.iva
    acumulado["total_items"] += valores.total
    if tasa == 5:
        acumulado["gravado5"] += valores.total
        acumulado["base5"] += base
        acumulado["iva5"] += valores.iva
    elif tasa == 10:
        acumulado["gravado10"] += valores.total
        acumulado["base10"] += base
        acumulado["iva10"] += valores.iva
    else:
        acumulado["exento"] += valores.total
    return item


def _build_g_dtip_de(
    invoice: Invoice, lineas: List[InvoiceLine]
) -> Tuple[etree._Element, Dict[str, Decimal]]:
    g_dtip = etree.Element(_q("gDtipDE"))

    if invoice.es_nota_credito:
        motivo = int(invoice.motivo_emision or 2)
        g_nc = _sub(g_dtip, "gCamNCDE")
        _sub(g_nc, "iMotEmi", motivo)
        _sub(g_nc, "dDesMotEmi", DESCRIPCION_MOTIVO_NC.get(motivo, "Devolución"))
    else:
        g_fe = _sub(g_dtip, "gCamFE")
        _sub(g_fe, "iIndPres", 1)
        _sub(g_fe, "dDesIndPres", "Operación presencial")
        g_cond = _sub(g_dtip, "gCamCond")
        _sub(g_cond, "iCondOpe", 1)
        _sub(g_cond, "dDCondOpe", "Contado")

    acumulado = {campo: Decimal("0.00") for campo in CAMPOS_ACUMULADOS}
    for numero, linea in enumerate(lineas, start=1):
        g_dtip.append(_build_g_cam_item(numero, linea, acumulado))
    return g_dtip, acumulado


def _verificar_totales(invoice: Invoice, acumulado: Dict[str, Decimal]) -> None:
    """
    Compara lo sumado desde los gCamItem con los totales de cabecera.
    Cualquier diferencia impide emitir el documento.
    """
    total_general = acumulado["bruto"] - acumulado["descuento"] + acumulado["iva"]
    comparaciones = (
        ("subtotal", acumulado["bruto"], invoice.subtotal),
        ("total_descuento", acumulado["descuento"], invoice.total_descuento),
        ("total_iva5", acumulado["iva5"], invoice.total_iva5),
        ("total_iva10", acumulado["iva10"], invoice.total_iva10),
        ("total_iva", acumulado["iva"], invoice.total_iva),
        ("total", total_general, invoice.total),
        ("total (items)", acumulado["total_items"], invoice.total),
    )
    diferencias = [
        f"{campo}: líneas={calculado} cabecera={cabecera}"
        for campo, calculado, cabecera in comparaciones
        if Decimal(str(calculado)) != Decimal(str(cabecera))
    ]
    if diferencias:
        raise XMLBuildError(
            f"Documento {invoice.pk}: totales de cabecera desactualizados ({'; '.join(diferencias)})."
        )


def _build_g_tot_sub(acumulado: Dict[str, Decimal]) -> etree._Element:
    total_general = acumulado["bruto"] - acumulado["descuento"] + acumulado["iva"]

    g_tot = etree.Element(_q("gTotSub"))
    _sub(g_tot, "dSubExe", _format_decimal(acumulado["exento"]))
    _sub(g_tot, "dSub5", _format_decimal(acumulado["gravado5"]))
    _sub(g_tot, "dSub10", _format_decimal(acumulado["gravado10"]))
    _sub(g_tot, "dTotOpe", _format_decimal(acumulado["bruto"]))
    _sub(g_tot, "dTotDesc", _format_decimal(acumulado["descuento"]))
    _sub(g_tot, "dTotGralOpe", _format_decimal(total_general))
    _sub(g_tot, "dIVA5", _format_decimal(acumulado["iva5"]))
    _sub(g_tot, "dIVA10", _format_decimal(acumulado["iva10"]))
    _sub(g_tot, "dTotIVA", _format_decimal(acumulado["iva"]))
    _sub(g_tot, "dBaseGrav5", _format_decimal(acumulado["base5"]))
    _sub(g_tot, "dBaseGrav10", _format_decimal(acumulado["base10"]))
    _sub(g_tot, "dTBasGraIVA", _format_decimal(acumulado["base5"] + acumulado["base10"]))
    return g_tot


def _build_g_cam_de_asoc(invoice: Invoice) -> etree._Element:
    g_asoc = etree.Element(_q("gCamDEAsoc"))
    _sub(g_asoc, "iTipDocAso", 1)
    _sub(g_asoc, "dDesTipDocAso", "Electrónico")
    _sub(g_asoc, "dCdCDERef", invoice.factura_original.cdc)
    return g_asoc


# =============================================================================
# API pública
# =============================================================================

def build_invoice_xml(invoice: Invoice) -> str:
    """
    Construye el XML del DE (factura o nota de crédito) a partir de una Invoice
    con CDC ya asignado.

    Retorna:
    - XML como string UTF-8 (incluye declaración XML).

    Lanza XMLBuildError si faltan datos obligatorios o si los totales de
    cabecera no coinciden con la suma de las líneas.
    """
    lineas = list(invoice.lines.all().order_by("id"))
    _validar_datos_obligatorios(invoice, lineas)

    logger.info(
        "Construyendo XML para documento id=%s tipo=%s cdc=%s",
        invoice.pk,
        invoice.tipo_documento,
        invoice.cdc,
    )

    rde = etree.Element(_q("rDE"), nsmap={None: SIFEN_NS, "xsi": XSI_NS})
    _sub(rde, "dVerFor", SIFEN_VERSION_FORMATO)

    de = _sub(rde, "DE")
    de.set("Id", invoice.cdc)
    _sub(de, "dDVId", invoice.cdc[-1])
    _sub(de, "dFecFirma", _format_fecha_hora(timezone.now()))
    _sub(de, "dSisFact", 1)

    de.append(_build_g_ope_de(invoice))
    de.append(_build_g_timb(invoice))
    de.append(_build_g_dat_gral_ope(invoice))

    g_dtip, acumulado = _build_g_dtip_de(invoice, lineas)
    _verificar_totales(invoice, acumulado)
    de.append(g_dtip)
    de.append(_build_g_tot_sub(acumulado))

    if invoice.es_nota_credito:
        de.append(_build_g_cam_de_asoc(invoice))

    xml_bytes = etree.tostring(
        rde,
        encoding="UTF-8",
        xml_declaration=True,
        pretty_print=False,
    )
    return xml_bytes.decode("utf-8")
