"""Errors raised while resolving a template."""
from typing import Optional


class ResolutionError(Exception):
    """Base class for every validation failure raised by the resolver."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class MissingRequiredParameter(ResolutionError):
    """A parameter without a default was not supplied."""


class UnknownParameter(ResolutionError):
    """A supplied parameter is not declared by the template."""


class TypeMismatch(ResolutionError):
    """A value does not match its declared type."""


class ConstraintViolation(TypeMismatch):
    """A value has the right type but breaks a declared constraint."""


class UndeclaredReference(ResolutionError):
    """An expression names something the template never declares."""


class DanglingReference(ResolutionError):
    """Something points at a resource excluded by its condition."""


class DuplicateResourceName(ResolutionError):
    """Two resolved resources share a type and name."""


class InvalidArrayIndex(ResolutionError):
    """A for-each instance was requested outside of its range."""


class CircularReference(ResolutionError):
    """Derived values or resources depend on each other in a cycle."""


class ExpressionError(ResolutionError):
    """An expression could not be parsed or evaluated."""


class SecretExposure(ResolutionError):
    """A secure value would end up in plain text."""
