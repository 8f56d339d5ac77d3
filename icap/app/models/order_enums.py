"""
Order-related enumerations.
"""

import enum
from typing import Optional

class OrderStatus(str, enum.Enum):
    """Order status enumeration (values are the stored text)."""
    REGISTRADO = "Registrado"  # Order created
    CARREGADO = "Carregado"  # Loaded at the supplier
    EM_ROTA = "Em Rota"  # Dispatched
    EM_TRANSPORTE = "Em Transporte"  # Driver is tracking the delivery
    ENTREGUE = "Entregue"  # Delivered
    SUSPENSO = "Suspenso"  # Reprogramming pending
    CANCELADO = "Cancelado"  # Terminal

    @classmethod
    def parse(cls, value: str) -> Optional["OrderStatus"]:
        """Match a status case-insensitively, ignoring surrounding whitespace."""
        normalized = value.strip().casefold()
        for member in cls:
            if member.value.casefold() == normalized:
                return member
        return None


class TrackingSource(str, enum.Enum):
    """What produced a tracking point."""
    LOCATION = "location"  # GPS sample pushed by the driver app
    STATUS = "status"  # Audit entry for a status transition
