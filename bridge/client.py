"""
Python client helper for the MPC bridge.
Lets tools and test harnesses drive the control pipeline over HTTP.
"""

import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, Mapping, Optional

import requests

logger = logging.getLogger(__name__)


class MPCBridgeClient:
    """Client for communicating with the MPC bridge server."""

    def __init__(self, base_url: str = "http://localhost:4567", timeout: float = 2.0):
        """
        Initialize MPC bridge client.

        Args:
            base_url: Base URL of the bridge server
            timeout: Request timeout (seconds); covers one full MPC solve
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _build_telemetry_payload(self, telemetry: Any) -> Dict[str, Any]:
        if is_dataclass(telemetry):
            telemetry = asdict(telemetry)
        if not isinstance(telemetry, Mapping):
            raise TypeError(f"Telemetry must be a mapping or dataclass, got {type(telemetry).__name__}")
        payload = dict(telemetry)
        for key in ("ptsx", "ptsy"):
            if key in payload and payload[key] is not None:
                payload[key] = [float(v) for v in payload[key]]
        return payload

    def send_telemetry(self, telemetry: Any) -> Optional[Dict[str, Any]]:
        """
        Send one telemetry record and return the command.

        Args:
            telemetry: TelemetryRecord or dict with the telemetry fields

        Returns:
            Command dictionary or None if the request failed
        """
        try:
            response = self.session.post(
                f"{self.base_url}/api/telemetry",
                json=self._build_telemetry_payload(telemetry),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.warning("Error sending telemetry: %s", e)
            return None

    def reset_session(self) -> bool:
        try:
            response = self.session.post(f"{self.base_url}/api/session/reset", timeout=self.timeout)
            response.raise_for_status()
            return response.json().get("status") == "reset"
        except requests.RequestException as e:
            logger.warning("Error resetting session: %s", e)
            return False

    def health_check(self) -> bool:
        """
        Check if bridge server is healthy.

        Returns:
            True if healthy, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/api/health", timeout=1.0)
            response.raise_for_status()
            return True
        except requests.RequestException:
            return False


if __name__ == "__main__":
    client = MPCBridgeClient()

    if client.health_check():
        print("Bridge server is healthy")
        command = client.send_telemetry({
            "ptsx": [0.0, 10.0, 20.0, 30.0, 40.0],
            "ptsy": [0.0, 0.0, 0.0, 0.0, 0.0],
            "x": 0.0, "y": 0.0, "psi": 0.0,
            "speed": 20.0, "steering_angle": 0.0, "throttle": 0.0,
        })
        print(f"Command: {command}")
    else:
        print("Bridge server is not available")
