# facturacion/exceptions.py
# -*- coding: utf-8 -*-
from __future__ import annotations


class WorkflowError(Exception):
    """Errores de orquestación SIFEN y violaciones de reglas de negocio sobre facturas."""


class InvalidStateError(WorkflowError):
    """Transición de estado no permitida para el documento."""

    def __init__(self, message: str, *, estado: str | None = None):
        super().__init__(message)
        self.estado = estado
