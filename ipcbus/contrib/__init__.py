"""Optional broker-side services built on the public bus API."""

from ipcbus.contrib.main_services import MainServiceState, register_main_services

__all__ = ["MainServiceState", "register_main_services"]
