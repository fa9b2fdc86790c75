"""Bottleline Simulator - bottling line analytics and what-if engine."""

__version__ = "0.1.0"

from .simulator import Simulator
from .config import Config
from .levels import MachineLevel
from .models import GridPosition, Machine, MachineType

__all__ = ["Simulator", "Config", "MachineLevel", "Machine", "MachineType", "GridPosition", "__version__"]
