import math

import pytest

from core import FlowAxis, Point3D, Pore, PoreNetworkModel
from processors.pnm_properties import (
    calculate_axis_tortuosity,
    calculate_network_properties,
    calculate_porosity,
    calculate_tortuosity,
    calculate_volumes,
    max_tortuosity,
)
from processors.pnm_throat import create_throat


def _pore(pid, x=0.0, y=0.0, z=0.0, radius=2.0):
    return Pore(id=pid, volume=4.0 / 3.0 * math.pi * radius ** 3, area=4.0 * math.pi * radius ** 2,
                radius=radius, center=Point3D(x, y, z))


def _network(pores, pairs):
    model = PoreNetworkModel(pores=pores)
    for id1, id2 in pairs:
        a, b = model.get_pore(id1), model.get_pore(id2)
        model.add_throat(create_throat(model.num_throats + 1, a, b, a.center.distance_to(b.center)))
    return model


def test_porosity_of_single_sphere():
    model = PoreNetworkModel(pores=[_pore(1, radius=1.0)])
    calculate_volumes(model)
    assert calculate_porosity(model) == pytest.approx(math.pi / 6.0)


def test_porosity_is_clamped_and_empty_model_is_zero():
    assert calculate_porosity(PoreNetworkModel()) == 0.0

    model = PoreNetworkModel(pores=[_pore(1, radius=1.0)])
    model.total_pore_volume = 1e6
    assert calculate_porosity(model) == 1.0


def test_max_tortuosity_depends_on_connectivity():
    assert max_tortuosity(4.5) == 5.0
    assert max_tortuosity(3.0) == 6.5
    assert max_tortuosity(2.2) == 8.0
    assert max_tortuosity(1.0) == 11.0


def test_straight_chain_has_unit_tortuosity():
    model = _network([_pore(i, z=10.0 * (i - 1)) for i in range(1, 5)], [(1, 2), (2, 3), (3, 4)])
    result = calculate_tortuosity(model)
    assert result == {"X": 1.0, "Y": 1.0, "Z": pytest.approx(1.0), "Mean": pytest.approx(1.0)}


def test_zigzag_path_tortuosity():
    model = _network(
        [_pore(1, z=0.0), _pore(2, x=10.0, z=10.0), _pore(3, z=20.0)],
        [(1, 2), (2, 3)],
    )
    tau_z = calculate_axis_tortuosity(model, FlowAxis.Z)
    tau_x = calculate_axis_tortuosity(model, FlowAxis.X)
    assert tau_z == pytest.approx(math.sqrt(2.0))
    assert tau_x == pytest.approx(math.sqrt(2.0))
    assert calculate_axis_tortuosity(model, FlowAxis.Y) == 1.0


def test_disconnected_axis_is_infinite():
    model = _network(
        [_pore(1, z=0.0), _pore(2, z=1.0), _pore(3, z=30.0), _pore(4, z=31.0)],
        [(1, 2), (3, 4)],
    )
    result = calculate_tortuosity(model)
    assert math.isinf(result["Z"])
    assert result["Mean"] == 1.0


def test_no_throats_gives_unit_tortuosity():
    model = PoreNetworkModel(pores=[_pore(1, z=0.0), _pore(2, z=30.0)])
    assert calculate_axis_tortuosity(model, FlowAxis.Z) == 1.0


def test_tortuosity_is_clamped_to_connectivity_ceiling():
    # Ring of degree-2 pores, ceiling 8.0
    pores = [_pore(1, z=0.0), _pore(2, x=40.0, z=0.0), _pore(3, x=40.0, z=5.0), _pore(4, z=5.0)]
    model = _network(pores, [(1, 2), (2, 3), (3, 4), (1, 4)])
    # inlets {1, 2}, outlets {3, 4}; paths [5, 5, 45, 45], upper median 45 over a 5 um sample
    assert calculate_axis_tortuosity(model, FlowAxis.Z) == pytest.approx(8.0)


def test_calculate_network_properties_fills_model():
    model = _network([_pore(i, z=10.0 * (i - 1)) for i in range(1, 5)], [(1, 2), (2, 3), (3, 4)])
    calculate_network_properties(model)

    assert model.total_pore_volume == pytest.approx(4 * 4.0 / 3.0 * math.pi * 8.0)
    assert model.total_throat_volume == pytest.approx(sum(t.volume for t in model.throats))
    assert 0.0 <= model.porosity <= 1.0
    assert model.tortuosity == pytest.approx(1.0)
    assert set(model.tortuosity_by_axis) == {"X", "Y", "Z"}
