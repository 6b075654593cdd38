"""Model interface and reference models."""

from .base import Model, ResidualSystem, State
from .ecm import CellParameters, CurrentControl, EquivalentCircuitCell, Rest, VoltageControl
from .residual import ResidualModel

__all__ = [
    "Model",
    "ResidualSystem",
    "State",
    "ResidualModel",
    "EquivalentCircuitCell",
    "CellParameters",
    "CurrentControl",
    "VoltageControl",
    "Rest",
]
