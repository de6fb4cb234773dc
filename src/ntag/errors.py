# src/ntag/errors.py
from __future__ import annotations


class NTagError(Exception):
    """Base class for errors that abort the processing of a single event."""


class InputShapeError(NTagError, ValueError):
    """
    Malformed per-event input: parallel arrays of different length,
    an empty geometry table, or a required per-event input that is absent.
    """


class SensorIdError(InputShapeError, IndexError):
    """A hit refers to a sensor id the geometry lookup does not know."""


class SchemaViolationError(NTagError, KeyError):
    """
    A candidate's feature names differ from the fixed schema, or a
    consumer (classifier, store) is missing a name it requires.
    """

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead
        return str(self.args[0]) if self.args else ""
