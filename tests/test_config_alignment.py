"""
Config alignment tests. Reads the shipped yaml directly; no solver is built.
Ensures the shipped config builds valid component configs and that the
actuation limits agree with the optimizer bounds.
"""

import math

import pytest
import yaml
from pathlib import Path

from control.actuation import build_actuation_config
from control.mpc_controller import build_mpc_config

project_root = Path(__file__).parent.parent
CONFIG_PATH = project_root / 'config' / 'mpc_config.yaml'


def _load_config() -> dict:
    if not CONFIG_PATH.exists():
        return {}
    with open(CONFIG_PATH, 'r') as f:
        return yaml.safe_load(f) or {}


class TestShippedConfig:

    def test_builds_mpc_config(self):
        config = _load_config()
        if not config:
            pytest.skip('mpc_config.yaml not found')
        mpc_config = build_mpc_config(config.get('mpc', {}), config.get('vehicle', {}))
        assert mpc_config.horizon_steps == 10
        assert mpc_config.dt == pytest.approx(0.1)
        assert mpc_config.lf == pytest.approx(2.67)
        assert mpc_config.solver_backend in ('ipopt', 'slsqp')

    def test_steering_limits_agree(self):
        """Command steering of magnitude 1 must correspond to the optimizer's steering bound."""
        config = _load_config()
        if not config:
            pytest.skip('mpc_config.yaml not found')
        mpc_config = build_mpc_config(config.get('mpc', {}), config.get('vehicle', {}))
        actuation = build_actuation_config(
            config.get('actuation', {}), config.get('vehicle', {}), config.get('mpc', {})
        )
        assert actuation.max_steering_angle == pytest.approx(mpc_config.max_steering_angle)
        assert actuation.max_steering_angle == pytest.approx(math.radians(25.0))

    def test_throttle_limits_agree(self):
        config = _load_config()
        if not config:
            pytest.skip('mpc_config.yaml not found')
        mpc_config = build_mpc_config(config.get('mpc', {}), config.get('vehicle', {}))
        actuation = build_actuation_config(
            config.get('actuation', {}), config.get('vehicle', {}), config.get('mpc', {})
        )
        assert actuation.throttle_min == pytest.approx(mpc_config.throttle_min)
        assert actuation.throttle_max == pytest.approx(mpc_config.throttle_max)

    def test_emit_delay_not_longer_than_compensated_latency(self):
        """The optimizer compensates for at least the delay the bridge emulates."""
        config = _load_config()
        if not config:
            pytest.skip('mpc_config.yaml not found')
        emit_delay = float(config.get('bridge', {}).get('emit_delay_s', 0.1))
        latency = float(config.get('latency', {}).get('compensation_s', 0.1))
        assert emit_delay <= latency + 1e-9

    def test_simulator_port(self):
        config = _load_config()
        if not config:
            pytest.skip('mpc_config.yaml not found')
        assert int(config.get('bridge', {}).get('port', 0)) == 4567
