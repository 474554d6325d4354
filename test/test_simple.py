import logging
import matplotlib.pyplot as plt
import numpy as np
import pytest
from os.path import join, dirname
from l1ist import ConfigurationError, ISTSolver, ISTConfig, Stage, ist, soft_threshold, tau_max


def test_identity_scenario():
    A = np.eye(4)
    y = np.ones(4)
    result = ist(y, A, 0.5, Initialization=0)
    assert np.allclose(result.x, 0.5)
    assert np.isclose(result.obj[0], 2.0)
    assert np.allclose(result.obj[1:], 1.5)
    # Relative change is zero from the second step, so `miniter` decides.
    assert result.nit == 5
    assert result.status == 1
    assert result.message == "Tolerance reached."
    assert result.nonzeros == 4
    assert np.isclose(result.l1_norm, 2.0)
    assert np.isclose(result.residual_norm, 1.0)
    assert np.isclose(result.objective, 1.5)


def test_first_step_is_soft_threshold_of_adjoint():
    solver = ISTSolver(np.ones(4), np.eye(4), 0.5)
    state = solver.initialize()
    assert state.stage is Stage.RUNNING
    assert np.array_equal(state.x, np.zeros(4))
    state = solver.step()
    assert state.iteration == 1
    assert np.allclose(state.x, soft_threshold(np.ones(4), 0.5))


def test_miniter_zero_stops_early():
    result = ist(np.ones(4), np.eye(4), 0.5, miniter=0)
    assert result.nit == 2
    assert len(result.obj) == 3


def test_trace_lengths():
    rng = np.random.default_rng(0)
    A = rng.normal(size=(10, 20)) / 10
    y = rng.normal(size=10)
    x0 = rng.normal(size=20)
    result = ist(y, A, 0.1, true_x=x0, miniter=7, tolerance=1e-3)
    n = result.nit + 1
    assert len(result.obj) == len(result.times) == len(result.mses) == n
    assert result.nit >= 7
    assert np.all(np.diff(result.times) >= 0)


def test_mse_trace_is_empty_without_ground_truth():
    x, obj, times, mses = ist(np.ones(4), np.eye(4), 0.5)
    assert len(mses) == 0
    assert len(obj) == len(times)
    assert x.shape == (4,)


@pytest.mark.parametrize("maxiter", [1, 3, 17])
def test_termination_within_budget(maxiter):
    rng = np.random.default_rng(maxiter)
    A = rng.normal(size=(8, 12)) / 10
    y = rng.normal(size=8)
    result = ist(y, A, 0.01, maxiter=maxiter, miniter=0, tolerance=1e-12)
    assert result.nit <= maxiter
    assert len(result.obj) <= maxiter + 1


def test_maxiter_criterion_runs_full_budget():
    result = ist(np.ones(4), np.eye(4), 0.5, stop_criterion="maxiter", maxiter=12)
    assert result.nit == 12
    assert len(result.obj) == 13
    assert result.status == 0
    assert result.message == "Maximum iterations reached."


def test_mse_is_normalized_by_size():
    true_x = np.full((2, 3), 0.5)
    y = np.ones((2, 3))
    solver = ISTSolver(
        y, lambda x: x, 0.5,
        ISTConfig(AT=lambda r: r, true_x=true_x, maxiter=4, miniter=0))
    state = solver.initialize()
    expected = [np.sum((state.x - true_x) ** 2) / true_x.size]
    while state.stage is Stage.RUNNING:
        state = solver.step()
        expected.append(np.sum((state.x - true_x) ** 2) / true_x.size)
    result = solver.result()
    assert np.allclose(result.mses, expected)
    assert np.isclose(result.mses[0], 0.25)
    assert result.mses[-1] == 0


def test_fixed_point_keeps_objective():
    rng = np.random.default_rng(3)
    y = rng.normal(size=(8, 8))
    result = ist(y, lambda x: x, 0.3, AT=lambda r: r, miniter=10)
    # With A = I the fixed point is reached in one step.
    assert np.allclose(result.x, soft_threshold(y, 0.3))
    assert np.allclose(result.obj[1:], result.obj[1])


def test_initializations():
    A = np.eye(3)
    y = np.array([1.0, -2.0, 3.0])
    r_adj = ist(y, A, 0.0, init="adjoint", maxiter=1, miniter=0)
    assert np.isclose(r_adj.obj[0], 0.0)
    r_arr = ist(y, A, 0.0, init=np.array([1.0, 0.0, 0.0]), maxiter=1, miniter=0)
    assert np.isclose(r_arr.obj[0], 0.5 * 13)
    r_rand = ist(y, A, 0.1, init="random", seed=1, maxiter=50, miniter=0)
    assert np.allclose(r_rand.x, soft_threshold(y, 0.1))


def test_sparse_recovery():
    rng = np.random.default_rng(42)
    m, p, k = 50, 100, 5
    A = rng.normal(size=(m, p)) / np.sqrt(m)
    x0 = np.zeros(p)
    x0[rng.choice(p, k, replace=False)] = rng.choice([-1.0, 1.0], k)
    y = A @ x0
    tau = 0.01 * tau_max(A, y)
    result = ist(y, A, tau, step="auto", stop_criterion="maxiter", maxiter=10000, true_x=x0)
    assert np.linalg.norm(result.x - x0) < 0.2 * np.linalg.norm(x0)
    # With step 1 / ||A||^2 the objective never increases.
    assert np.all(np.diff(result.obj) <= 1e-12 * result.obj[0])
    assert result.mses[-1] < result.mses[0]

    fig, axes = plt.subplots(1, 2, figsize=(10, 4))
    ax = axes[0]
    ax.stem(x0, linefmt="k-", markerfmt="ko")
    ax.stem(result.x, linefmt="none", markerfmt="rx")
    ax = axes[1]
    ax.set_yscale("log")
    ax.grid()
    ax.plot(result.obj)
    ax.set_title("Objective")
    fig.tight_layout()
    fig.savefig(join(dirname(__file__), "convergence.png"))
    plt.close(fig)


def test_support_criterion():
    rng = np.random.default_rng(5)
    A = rng.normal(size=(20, 40)) / 10
    y = rng.normal(size=20)
    result = ist(y, A, 0.05, stop_criterion=0, tolerance=1e-3, maxiter=500)
    assert result.nit <= 500
    assert len(result.obj) == result.nit + 1


def test_objective_value_criterion():
    result = ist(np.ones(4), np.eye(4), 0.5, stop_criterion=4, tolerance=1.6, miniter=0)
    assert result.nit == 1
    assert result.status == 1


def test_verbose_logging(caplog):
    caplog.set_level(logging.INFO, logger="l1ist.ist")
    ist(np.ones(4), np.eye(4), 0.5, verbose=True, true_x=np.full(4, 0.5))
    text = caplog.text
    assert "Iteration = 1, objective = 2.000000e+00, mse = 2.5000e-01, nonzeros = 0" in text
    assert "Iteration = 6" in text
    assert "Finished the IST algorithm: Tolerance reached." in text
    assert "Number of non-zero components = 4" in text


def test_quiet_by_default(caplog):
    caplog.set_level(logging.INFO, logger="l1ist.ist")
    ist(np.ones(4), np.eye(4), 0.5)
    assert not [r for r in caplog.records if r.name == "l1ist.ist"]


def test_progress_bar_does_not_change_result():
    r1 = ist(np.ones(4), np.eye(4), 0.5, progress=True)
    r2 = ist(np.ones(4), np.eye(4), 0.5)
    assert np.array_equal(r1.x, r2.x)
    assert np.array_equal(r1.obj, r2.obj)


def test_wrong_number_of_arguments():
    with pytest.raises(TypeError):
        ist(np.ones(4), np.eye(4))


def test_unrecognized_option():
    with pytest.raises(ConfigurationError, match="Unrecognized option"):
        ist(np.ones(4), np.eye(4), 0.5, Tolerence=0.1)


def test_negative_tau():
    with pytest.raises(ConfigurationError, match="tau"):
        ist(np.ones(4), np.eye(4), -0.5)


def test_callable_without_adjoint():
    with pytest.raises(ConfigurationError, match="AT is required"):
        ist(np.ones(4), lambda x: x, 0.5)


def test_true_x_shape_mismatch():
    with pytest.raises(ConfigurationError, match="true_x"):
        ist(np.ones(4), np.eye(4), 0.5, true_x=np.ones(3))


def test_operator_errors_propagate():
    with pytest.raises(ValueError) as excinfo:
        ist(np.ones(5), np.ones((3, 4)), 0.5)
    assert not isinstance(excinfo.value, ConfigurationError)

    def broken(x):
        raise ZeroDivisionError("boom")

    with pytest.raises(ZeroDivisionError, match="boom"):
        ist(np.ones(4), broken, 0.5, AT=lambda r: r)


def test_solver_stage_guards():
    solver = ISTSolver(np.ones(4), np.eye(4), 0.5)
    with pytest.raises(RuntimeError):
        solver.step()
    with pytest.raises(RuntimeError):
        solver.result()
    solver.run()
    with pytest.raises(RuntimeError):
        solver.initialize()


def test_divergence_is_reported():
    # A step of 1 is too long for ||A||^2 = 9: every step grows x.
    result = ist(np.ones(4), 3 * np.eye(4), 0.1)
    assert result.status == 2
    assert result.message == "Objective is not finite (diverged)."
    assert result.criterion == np.inf
    assert not np.isnan(result.criterion)
    assert result.nit < 10000
    assert np.isinf(result.obj[-1])
    assert np.all(np.isfinite(result.obj[:-1]))


def test_auto_step_is_reproducible_with_seed():
    rng = np.random.default_rng(5)
    M = rng.normal(size=(10, 20))
    y = rng.normal(size=10)
    results = [
        ist(y, lambda x: M @ x, 0.1, AT=lambda r: M.T @ r, step="auto", seed=1,
            stop_criterion="maxiter", maxiter=50)
        for _ in range(2)
    ]
    assert np.array_equal(results[0].x, results[1].x)
    assert np.array_equal(results[0].obj, results[1].obj)


def test_zero_dimensional_tau():
    result = ist(np.ones(4), np.eye(4), np.array(0.5))
    assert np.allclose(result.x, 0.5)
    assert result.status == 1
