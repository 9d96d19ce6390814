import math
import threading

import numpy as np
import pytest

from core import (
    CancellationSignaled,
    CancellationToken,
    ComputeContext,
    DegenerateGeometry,
    FlowAxis,
    GpuSolverFailure,
    InvalidModelError,
    NumericalNonConvergence,
    Point3D,
    Pore,
    PoreNetworkModel,
    SimulationParamsDTO,
)
from processors.linear_solvers import JacobiGpuSolver
from processors.permeability import (
    PermeabilitySimulator,
    SimulationState,
    darcy_permeability,
    select_boundary_pores,
    submit_simulation,
)
from processors.pnm_throat import create_throat

DARCY = 9.869233e-13
CPU = SimulationParamsDTO(use_gpu=False)


def _pore(pid, z, radius, x=0.0):
    return Pore(id=pid, volume=4.0 / 3.0 * math.pi * radius ** 3, area=4.0 * math.pi * radius ** 2,
                radius=radius, center=Point3D(x, 0.0, z))


def _network(pores, pairs):
    model = PoreNetworkModel(pores=pores)
    for id1, id2 in pairs:
        a, b = model.get_pore(id1), model.get_pore(id2)
        model.add_throat(create_throat(model.num_throats + 1, a, b, a.center.distance_to(b.center)))
    return model.freeze()


def _two_pore_network():
    return _network([_pore(1, 0.0, 10.0), _pore(2, 25.0, 20.0)], [(1, 2)])


def _chain_network(n=3, spacing=20.0, radius=5.0):
    pores = [_pore(i, spacing * (i - 1), radius) for i in range(1, n + 1)]
    return _network(pores, [(i, i + 1) for i in range(1, n)])


def _conductance(r_um, l_um, mu):
    return math.pi * (r_um * 1e-6) ** 4 / (8.0 * mu * l_um * 1e-6)


def test_two_pore_closed_form():
    result = PermeabilitySimulator().process(_two_pore_network(), params=CPU)

    # throat r = 4 um, L = 0.1 um; sample 25 um long, 40 x 40 um face
    q = _conductance(4.0, 0.1, 0.001) * 1000.0
    k_m2 = q * 0.001 * 25e-6 / (1.6e-9 * 1000.0)

    assert result.is_valid
    assert result.solver_report.converged
    assert result.inlet_pores == (1,)
    assert result.outlet_pores == (2,)
    assert result.pressure_field == {1: 2000.0, 2: 1000.0}
    assert result.total_flow_rate == pytest.approx(q, rel=1e-9)
    assert result.model_length == pytest.approx(25e-6)
    assert result.model_area == pytest.approx(1.6e-9)
    assert result.permeability_m2 == pytest.approx(k_m2, rel=1e-9)
    assert result.permeability_darcy == pytest.approx(k_m2 / DARCY, rel=1e-9)
    assert result.permeability_millidarcy == pytest.approx(1000.0 * k_m2 / DARCY, rel=1e-9)
    assert result.corrected_permeability_darcy == pytest.approx(result.permeability_darcy)


def test_series_chain_pressure_and_flow():
    model = _chain_network()
    result = PermeabilitySimulator().process(model, params=CPU)

    # throat r = 2 um, L = 10 um; pore 2 sits half way
    q = _conductance(2.0, 10.0, 0.001) * 500.0
    k_m2 = q * 0.001 * 40e-6 / (1e-10 * 1000.0)

    assert result.pressure_field[2] == pytest.approx(1500.0, rel=1e-9)
    assert result.throat_flow_rates[1] == pytest.approx(q, rel=1e-8)
    assert result.throat_flow_rates[2] == pytest.approx(q, rel=1e-8)
    assert result.total_flow_rate == pytest.approx(q, rel=1e-8)
    assert result.permeability_m2 == pytest.approx(k_m2, rel=1e-8)


def test_boundary_selection_takes_ten_percent_by_coordinate_then_id():
    pores = [_pore(i, float(20 - i), 1.0) for i in range(1, 21)]
    inlets, outlets = select_boundary_pores(pores, FlowAxis.Z)
    assert inlets == [20, 19]
    assert outlets == [2, 1]


def test_empty_networks_are_rejected():
    with pytest.raises(InvalidModelError):
        PermeabilitySimulator().process(PoreNetworkModel(), params=CPU)
    with pytest.raises(InvalidModelError):
        PermeabilitySimulator().process(PoreNetworkModel(pores=[_pore(1, 0.0, 1.0), _pore(2, 5.0, 1.0)]),
                                        params=CPU)


def test_zero_length_sample_is_invalid_not_an_error():
    # All pores share x, so the X extent is zero
    result = PermeabilitySimulator().process(_chain_network(), params=SimulationParamsDTO(use_gpu=False, flow_axis="X"))
    assert not result.is_valid
    assert result.permeability_m2 is None
    assert result.permeability_millidarcy is None
    assert result.corrected_permeability_darcy is None
    assert "length" in result.invalid_reason


def test_zero_pressure_drop_is_invalid():
    params = SimulationParamsDTO(use_gpu=False, input_pressure=1000.0, output_pressure=1000.0)
    result = PermeabilitySimulator().process(_chain_network(), params=params)
    assert not result.is_valid
    assert result.permeability_darcy is None


def test_darcy_permeability_rejects_degenerate_geometry():
    assert darcy_permeability(1e-12, 0.001, 1e-5, 1e-10, 1000.0) == pytest.approx(1e-13)
    with pytest.raises(DegenerateGeometry):
        darcy_permeability(1e-12, 0.001, 1e-5, 0.0, 1000.0)


def test_tortuosity_override_and_kozeny_carman():
    model = _chain_network()
    result = PermeabilitySimulator().process(
        model, params=SimulationParamsDTO(use_gpu=False, tortuosity=2.0))

    assert result.tortuosity == 2.0
    assert result.corrected_permeability_darcy == pytest.approx(result.permeability_darcy / 4.0)
    assert result.kozeny_carman_darcy is not None and result.kozeny_carman_darcy > 0
    assert result.kozeny_carman_millidarcy == pytest.approx(1000.0 * result.kozeny_carman_darcy)

    without = PermeabilitySimulator().process(
        model, params=SimulationParamsDTO(use_gpu=False, compute_kozeny_carman=False))
    assert without.kozeny_carman_darcy is None


def test_infinite_tortuosity_skips_correction():
    model = _chain_network()
    model.tortuosity = math.inf
    result = PermeabilitySimulator().process(model, params=CPU)
    assert result.is_valid
    assert result.corrected_permeability_darcy is None


def test_progress_milestones_and_terminal_state():
    seen = []
    simulator = PermeabilitySimulator()
    simulator.process(_chain_network(), callback=lambda p, m: seen.append(p), params=CPU)
    assert seen == [10, 20, 30, 40, 50, 70, 80, 90, 100]
    assert simulator.state is SimulationState.TERMINAL


def test_non_convergence_returns_best_iterate():
    model = _chain_network(n=30, spacing=10.0, radius=4.0)
    params = SimulationParamsDTO(use_gpu=False, max_iterations=2, tolerance=1e-14)
    with pytest.warns(NumericalNonConvergence):
        result = PermeabilitySimulator().process(model, params=params)
    assert not result.solver_report.converged
    assert result.solver_report.iterations == 2


def test_cancelled_simulation_raises():
    token = CancellationToken()
    token.cancel()
    simulator = PermeabilitySimulator()
    with pytest.raises(CancellationSignaled):
        simulator.process(_chain_network(), params=CPU, cancel_token=token)
    assert simulator.state is SimulationState.TERMINAL


class _FakeDevice:
    available = True
    device_name = "fake:0"

    def __init__(self):
        self.lock = threading.RLock()

    def clear_memory(self):
        pass


def test_gpu_failure_falls_back_to_cpu(monkeypatch):
    def broken_solve(self, system):
        raise GpuSolverFailure("kernel launch failed")

    monkeypatch.setattr(JacobiGpuSolver, "solve", broken_solve)
    model = _chain_network(n=6, spacing=8.0, radius=5.0)

    gpu = PermeabilitySimulator(_FakeDevice()).process(model, params=SimulationParamsDTO(use_gpu=True))
    cpu = PermeabilitySimulator().process(model, params=CPU)

    assert gpu.solver_report.fell_back_to_cpu
    assert gpu.solver_report.backend == "cpu"
    assert gpu.pressure_field == pytest.approx(cpu.pressure_field)
    assert gpu.permeability_m2 == pytest.approx(cpu.permeability_m2)


def test_unavailable_device_falls_back_to_cpu():
    model = _chain_network(n=6, spacing=8.0, radius=5.0)
    result = PermeabilitySimulator(ComputeContext(enabled=False)).process(
        model, params=SimulationParamsDTO(use_gpu=True))
    cpu = PermeabilitySimulator().process(model, params=CPU)

    assert result.solver_report.fell_back_to_cpu
    np.testing.assert_allclose(
        [result.pressure_field[p.id] for p in model.pores],
        [cpu.pressure_field[p.id] for p in model.pores],
    )


def test_submit_simulation_returns_future():
    future = submit_simulation(_chain_network(), params=CPU)
    result = future.result(timeout=60)
    assert result.is_valid
    assert result.to_dict()["Solver"] == "GaussSeidel"
