"""
Network reachability check run before every cloud call.
"""

import requests
from loguru import logger

from ticketscan.config import ScanSettings


class ConnectivityChecker:
    """Probes the cloud endpoint host with a short HEAD request."""

    def __init__(self, probe_url: str, timeout: float = 3.0):
        self.probe_url = probe_url
        self.timeout = timeout

    def is_reachable(self) -> bool:
        try:
            requests.head(self.probe_url, timeout=self.timeout, allow_redirects=False)
            return True
        except requests.exceptions.Timeout:
            logger.warning(f"Connectivity probe to {self.probe_url} timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Connectivity probe to {self.probe_url} failed: {e}")
        return False

    def __call__(self) -> bool:
        return self.is_reachable()


def create_connectivity_checker(settings: ScanSettings = None) -> ConnectivityChecker:
    settings = settings or ScanSettings()
    return ConnectivityChecker(settings.connectivity_probe_url, settings.connectivity_timeout_seconds)
