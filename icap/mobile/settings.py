"""
Driver client settings.

Defaults come from the environment (``ICAP_TRACKER_*``); values the driver
changed in the app are persisted in the local store and win over them.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings

from icap.mobile.store import LocalStore, SETTINGS_KEY

# Keys the app lets the driver change, stored with their original names
PERSISTED_FIELDS = {
    "update_interval": "updateInterval",
    "server_url": "serverUrl",
}


class TrackerSettings(BaseSettings):
    """Client settings."""
    
    # Sampling
    update_interval: int = 30000  # ms between location samples
    high_accuracy: bool = True
    geolocation_timeout: int = 10000  # ms
    max_sample_age: int = 5000  # ms, cached fix still acceptable
    display_buffer_size: int = 50
    
    # Server
    server_url: str = "http://localhost:8080"
    request_timeout: float = 10.0  # seconds
    circuit_failure_threshold: int = 3
    circuit_reset_timeout: float = 30.0  # seconds
    
    # Status values the driver app writes
    in_transit_status: str = "Em Transporte"
    delivered_status: str = "Entregue"
    
    # Local device storage
    store_path: Optional[Path] = None
    
    class Config:
        env_prefix = "ICAP_TRACKER_"
        case_sensitive = False
    
    def to_record(self) -> Dict[str, Any]:
        return {stored: getattr(self, name) for name, stored in PERSISTED_FIELDS.items()}


def load_settings(store: LocalStore, base: Optional[TrackerSettings] = None) -> TrackerSettings:
    """Merge the persisted settings record over the defaults."""
    settings = base or TrackerSettings()
    saved = store.get(SETTINGS_KEY) or {}
    overrides = {
        name: saved[stored]
        for name, stored in PERSISTED_FIELDS.items()
        if saved.get(stored) is not None
    }
    if not overrides:
        return settings
    return settings.model_copy(update=overrides)


def save_settings(store: LocalStore, settings: TrackerSettings) -> None:
    store.set(SETTINGS_KEY, settings.to_record())
