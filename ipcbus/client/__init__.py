"""Client-side bus: local re-dispatch registry over one transport subscription."""

from ipcbus.client.bus_client import BusClient

__all__ = ["BusClient"]
