import math

import numpy as np

from core import FlowAxis, Point3D, Pore, PoreNetworkModel
from processors.pnm_adjacency import build_pair_table
from processors.pnm_flow_path import (
    boundary_zones,
    component_labels,
    enforce_flow_path,
    find_clusters,
    throat_graph,
    zones_connected,
)
from processors.pnm_throat import create_throat


def _pore(pid, z, x=0.0, radius=2.0):
    return Pore(id=pid, volume=4.0 / 3.0 * math.pi * radius ** 3, area=4.0 * math.pi * radius ** 2,
                radius=radius, center=Point3D(x, 0.0, z))


def _connect(model, id1, id2):
    a, b = model.get_pore(id1), model.get_pore(id2)
    model.add_throat(create_throat(model.num_throats + 1, a, b, a.center.distance_to(b.center)))


def test_boundary_zones_use_two_average_radii():
    model = PoreNetworkModel(pores=[_pore(1, 0.0), _pore(2, 3.9), _pore(3, 15.0), _pore(4, 26.5), _pore(5, 30.0)])
    inlets, outlets = boundary_zones(model, FlowAxis.Z)
    assert inlets == [1, 2]
    assert outlets == [4, 5]


def test_boundary_layer_follows_model_average_radius():
    # radii 1, 5, 3 -> average 3 -> layer 6
    model = PoreNetworkModel(pores=[_pore(1, 0.0, radius=1.0), _pore(2, 5.9, radius=5.0),
                                    _pore(3, 20.0, radius=3.0)])
    assert model.average_radius() == 3.0
    inlets, outlets = boundary_zones(model, FlowAxis.Z)
    assert inlets == [1, 2]
    assert outlets == [3]
    assert boundary_zones(PoreNetworkModel(), FlowAxis.Z) == ([], [])


def test_find_clusters_orders_largest_first():
    model = PoreNetworkModel(pores=[_pore(i, float(i)) for i in range(1, 7)])
    for id1, id2 in [(2, 3), (3, 4), (5, 6)]:
        _connect(model, id1, id2)

    labels = component_labels(model)
    assert find_clusters(model, labels) == [[2, 3, 4], [5, 6], [1]]
    assert zones_connected(model, labels, [2], [4])
    assert not zones_connected(model, labels, [1, 5], [4])


def test_clusters_of_equal_size_order_by_smallest_id():
    model = PoreNetworkModel(pores=[_pore(i, float(i)) for i in range(1, 6)])
    _connect(model, 4, 5)
    _connect(model, 2, 3)
    assert find_clusters(model) == [[2, 3], [4, 5], [1]]


def test_throat_graph_is_symmetric_and_distance_weighted():
    model = PoreNetworkModel(pores=[_pore(1, 0.0), _pore(2, 10.0), _pore(3, 25.0)])
    _connect(model, 1, 2)
    _connect(model, 2, 3)

    graph = throat_graph(model).toarray()
    np.testing.assert_allclose(graph, graph.T)
    assert graph[0, 1] == 10.0
    assert graph[1, 2] == 15.0
    assert graph[0, 2] == 0


def test_bridges_isolated_pore_with_single_synthetic_throat():
    model = PoreNetworkModel(pores=[_pore(1, 0.0), _pore(2, 10.0), _pore(3, 30.0)])
    _connect(model, 1, 2)
    table = build_pair_table(model.pores, workers=1)

    added = enforce_flow_path(model, table, FlowAxis.Z)

    assert added == 1
    assert model.num_throats == 2
    bridge = model.throats[-1]
    assert bridge.synthetic
    assert bridge.key == (2, 3)
    assert bridge.id == 2
    assert bridge.radius == 0.4 * 2.0
    assert [p.connection_count for p in model.pores] == [1, 2, 1]
    model.validate()


def test_connected_network_is_left_alone():
    model = PoreNetworkModel(pores=[_pore(1, 0.0), _pore(2, 10.0), _pore(3, 20.0)])
    _connect(model, 1, 2)
    _connect(model, 2, 3)
    table = build_pair_table(model.pores, workers=1)

    assert enforce_flow_path(model, table, FlowAxis.Z) == 0
    assert model.num_throats == 2


def test_many_components_are_merged_iteratively():
    model = PoreNetworkModel(pores=[_pore(i, 10.0 * (i - 1)) for i in range(1, 7)])
    table = build_pair_table(model.pores, workers=1)

    added = enforce_flow_path(model, table, FlowAxis.Z)

    assert added == 5
    assert all(t.synthetic for t in model.throats)
    assert len(find_clusters(model)) == 1
    assert [t.key for t in model.throats] == [(1, 2), (2, 3), (3, 4), (4, 5), (5, 6)]


def test_flow_axis_selects_boundary_zones():
    # Connected along X, split along Z
    model = PoreNetworkModel(pores=[_pore(1, 0.0, x=0.0), _pore(2, 0.0, x=10.0), _pore(3, 30.0, x=10.0)])
    _connect(model, 1, 2)
    table = build_pair_table(model.pores, workers=1)

    assert enforce_flow_path(model, table, FlowAxis.X) == 0
    assert enforce_flow_path(model, table, FlowAxis.Z) == 1


def test_fewer_than_two_pores_is_noop():
    model = PoreNetworkModel(pores=[_pore(1, 0.0)])
    table = build_pair_table(model.pores, workers=1)
    assert enforce_flow_path(model, table) == 0
