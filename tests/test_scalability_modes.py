import pytest

from rtpsfu.scalability_modes import ScalabilityMode, parse_scalability_mode


@pytest.mark.parametrize(
    "mode, expected",
    [
        ("L1T3", ScalabilityMode(spatial_layers=1, temporal_layers=3, ksvc=False)),
        ("L3T2_KEY", ScalabilityMode(spatial_layers=3, temporal_layers=2, ksvc=True)),
        ("S2T3", ScalabilityMode(spatial_layers=2, temporal_layers=3, ksvc=False)),
        ("foo", ScalabilityMode(spatial_layers=1, temporal_layers=1, ksvc=False)),
        ("", ScalabilityMode(spatial_layers=1, temporal_layers=1, ksvc=False)),
        ("S0T3", ScalabilityMode(spatial_layers=1, temporal_layers=1, ksvc=False)),
        ("S1T0", ScalabilityMode(spatial_layers=1, temporal_layers=1, ksvc=False)),
        ("L20T3", ScalabilityMode(spatial_layers=20, temporal_layers=3, ksvc=False)),
        ("S200T3", ScalabilityMode(spatial_layers=1, temporal_layers=1, ksvc=False)),
        ("L4T7_KEY_SHIFT", ScalabilityMode(spatial_layers=4, temporal_layers=7, ksvc=True)),
    ],
)
def test_parse_scalability_mode(mode, expected):
    assert parse_scalability_mode(mode) == expected


def test_default_mode_is_single_layer():
    assert parse_scalability_mode("foo") == ScalabilityMode()