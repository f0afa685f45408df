import contextlib
import logging
import math
import sys
from pathlib import Path

import pytest

np = pytest.importorskip("numpy")
sp = pytest.importorskip("scipy.sparse")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from poismf import objective, optimizer, scratch, solvers
from poismf.params import Hyperparameters
from poismf.views import FactorMatrix, SparseMatrixView

A_TRUE = np.array([[2.0, 1.0], [1.0, 2.0], [1.5, 1.0], [1.0, 1.5], [2.0, 2.0]])
B_TRUE = np.array([[1.0, 2.0], [2.0, 1.0], [1.0, 1.0], [2.0, 1.5], [1.5, 2.0], [1.0, 1.5]])


def _views(X):
    X = sp.csr_matrix(X)
    return SparseMatrixView.from_scipy(X, "row"), SparseMatrixView.from_scipy(X.tocsc(), "col")


def _random_counts(seed=0, shape=(8, 7), density=0.5):
    rng = np.random.default_rng(seed)
    mask = rng.random(shape) < density
    mask[np.arange(shape[0]), np.arange(shape[0]) % shape[1]] = True
    mask[np.arange(shape[1]) % shape[0], np.arange(shape[1])] = True
    return np.where(mask, rng.integers(1, 6, size=shape), 0).astype(np.float64)


def _run(X, A, B, **kwargs):
    Xr, Xc = _views(X)
    params = Hyperparameters(**{"k": A.shape[1], **kwargs})
    opt = optimizer.AlternatingOptimizer(params)
    opt.run(FactorMatrix(A), Xr, FactorMatrix(B), Xc)
    return opt


def _near_truth(seed=3, spread=0.2, A_true=A_TRUE, B_true=B_TRUE):
    rng = np.random.default_rng(seed)
    A = A_true * (1 + spread * rng.uniform(-1, 1, A_true.shape))
    B = B_true * (1 + spread * rng.uniform(-1, 1, B_true.shape))
    return np.ascontiguousarray(A), np.ascontiguousarray(B)


@pytest.mark.parametrize("use_cg", [False, True])
def test_factors_stay_nonnegative_and_finite(use_cg):
    X = _random_counts()
    rng = np.random.default_rng(1)
    A = rng.uniform(0.1, 1.0, (8, 3))
    B = rng.uniform(0.1, 1.0, (7, 3))

    opt = _run(X, A, B, use_cg=use_cg, step_size=0.01, l1_reg=0.1, l2_reg=0.1, numiter=10, npass=3, ncores=2)

    assert opt.state == optimizer.OptimizerState.DONE
    assert opt.iterations_done == 10
    for M in (A, B):
        assert np.all(np.isfinite(M))
        assert np.all(M >= 0)


@pytest.mark.parametrize("use_cg", [False, True])
def test_zero_iterations_leave_factors_untouched(use_cg):
    X = _random_counts()
    rng = np.random.default_rng(2)
    A = rng.random((8, 3))
    B = rng.random((7, 3))
    A0, B0 = A.tobytes(), B.tobytes()

    _run(X, A, B, use_cg=use_cg, numiter=0, npass=2, step_size=0.1)

    assert A.tobytes() == A0
    assert B.tobytes() == B0


@pytest.mark.parametrize("use_cg", [False, True])
def test_runs_are_bit_identical_for_fixed_worker_count(use_cg):
    X = _random_counts(seed=4)
    rng = np.random.default_rng(5)
    A_init = rng.uniform(0.1, 1.0, (8, 3))
    B_init = rng.uniform(0.1, 1.0, (7, 3))

    results = []
    for _ in range(2):
        A, B = A_init.copy(), B_init.copy()
        _run(X, A, B, use_cg=use_cg, step_size=0.01, l2_reg=0.05, numiter=5, npass=3, ncores=3)
        results.append((A, B))

    assert np.array_equal(results[0][0], results[1][0])
    assert np.array_equal(results[0][1], results[1][1])


def test_pgd_is_close_across_worker_counts():
    X = _random_counts(seed=6)
    rng = np.random.default_rng(7)
    A_init = rng.uniform(0.1, 1.0, (8, 3))
    B_init = rng.uniform(0.1, 1.0, (7, 3))

    outputs = {}
    for ncores in (1, 4):
        A, B = A_init.copy(), B_init.copy()
        _run(X, A, B, step_size=0.01, l2_reg=0.05, numiter=5, npass=3, ncores=ncores)
        outputs[ncores] = (A, B)

    np.testing.assert_allclose(outputs[1][0], outputs[4][0], rtol=1e-7, atol=1e-10)
    np.testing.assert_allclose(outputs[1][1], outputs[4][1], rtol=1e-7, atol=1e-10)


def test_pgd_recovers_counts_on_observed_pattern():
    # each factor has zeros, so A*B^T has a fixed block of unobserved entries
    A_sparse = np.array([[2.0, 0.0], [1.5, 0.0], [0.0, 1.0], [0.0, 2.0], [1.0, 1.0]])
    B_sparse = np.array([[1.0, 0.0], [2.0, 0.0], [1.5, 0.0], [0.0, 1.0], [0.0, 2.0], [1.0, 1.5]])
    X = A_sparse @ B_sparse.T
    observed = X > 0
    assert not observed.all()

    A, B = _near_truth(spread=0.15, A_true=A_sparse, B_true=B_sparse)
    Xr, _ = _views(X)
    assert Xr.nnz == int(observed.sum())

    def observed_error():
        diff = (A @ B.T - X)[observed]
        return np.linalg.norm(diff) / np.linalg.norm(X[observed])

    start_err = observed_error()
    _run(X, A, B, step_size=0.1, l1_reg=0.0, l2_reg=0.0, numiter=200, npass=5, ncores=2)

    rel_err = observed_error()
    assert rel_err < 0.05
    assert rel_err < start_err
    assert np.all(A >= 0) and np.all(B >= 0)


def test_larger_l2_reg_shrinks_factors():
    X = A_TRUE @ B_TRUE.T
    norms = []
    for l2 in (0.0, 1.0, 10.0):
        A, B = _near_truth()
        _run(X, A, B, step_size=0.1, l2_reg=l2, numiter=50, npass=5)
        norms.append(np.linalg.norm(np.vstack([A, B]), axis=1).sum())

    assert norms[0] > norms[1] > norms[2]


def test_larger_l1_reg_zeroes_redundant_component():
    # rank-1 data fitted with k=2; the second component only carries noise
    a = np.array([1.0, 1.5, 2.0, 1.2, 1.8])
    b = np.array([1.0, 2.0, 1.5, 1.0, 1.2, 1.6])
    X = np.outer(a, b)

    def fit(l1):
        A = np.ascontiguousarray(np.column_stack([a, np.full(5, 0.3)]))
        B = np.ascontiguousarray(np.column_stack([b, np.full(6, 0.3)]))
        _run(X, A, B, step_size=0.1, l1_reg=l1, l2_reg=0.0, numiter=30, npass=5)
        return A, B

    def near_zero(A, B):
        return int(np.sum(np.vstack([A, B]) < 1e-6))

    dense = near_zero(*fit(0.0))
    sparse = near_zero(*fit(2.0))
    assert sparse > dense


def test_cg_and_pgd_reach_the_same_objective():
    # 3 x 3, k=1, three non-zeros on the diagonal. The rank-1 optimum is
    # a_i b_j = r_i c_j / N, so the minimum objective is known exactly.
    x = np.array([1.0, 2.0, 3.0])
    X = np.diag(x)
    Xr, _ = _views(X)
    N = x.sum()
    optimum = N - float(np.sum(x * np.log(x * x / N)))

    values = {}
    for use_cg in (False, True):
        A = np.ones((3, 1))
        B = np.ones((3, 1))
        _run(X, A, B, use_cg=use_cg, step_size=0.1, numiter=30, npass=50, l2_reg=0.0, l1_reg=0.0)
        values[use_cg] = objective.full_objective(A, B, Xr)

    assert values[False] == pytest.approx(values[True], abs=2e-2)
    for v in values.values():
        assert optimum - 1e-9 <= v <= optimum + 2e-2


def test_callback_sees_every_iteration_and_debug_objective_logged(caplog):
    X = _random_counts()
    rng = np.random.default_rng(8)
    A = rng.uniform(0.1, 1.0, (8, 2))
    B = rng.uniform(0.1, 1.0, (7, 2))
    Xr, Xc = _views(X)
    seen = []

    params = Hyperparameters(k=2, step_size=0.01, numiter=3, npass=1)
    opt = optimizer.AlternatingOptimizer(params, callback=lambda it, o: seen.append((it, o.state)))
    with caplog.at_level(logging.DEBUG, logger="poismf.optimizer"):
        opt.run(FactorMatrix(A), Xr, FactorMatrix(B), Xc)

    assert seen == [(i, optimizer.OptimizerState.UPDATING_B) for i in range(3)]
    assert sum("objective=" in r.getMessage() for r in caplog.records) == 3


def test_pgd_step_size_schedule_restarts_each_run():
    X = _random_counts()
    Xr, Xc = _views(X)
    params = Hyperparameters(k=2, step_size=0.08, numiter=3, npass=1)
    opt = optimizer.AlternatingOptimizer(params)
    for _ in range(2):
        A = np.full((8, 2), 0.5)
        B = np.full((7, 2), 0.5)
        opt.run(FactorMatrix(A), Xr, FactorMatrix(B), Xc)
        assert opt.solver.step_size == pytest.approx(0.01)


def test_allocation_failure_aborts_before_touching_factors(monkeypatch, caplog):
    X = _random_counts()
    rng = np.random.default_rng(9)
    A = rng.random((8, 3))
    B = rng.random((7, 3))
    A0, B0 = A.copy(), B.copy()

    calls = {"n": 0}
    real_allocate = scratch._allocate

    def flaky_allocate(size):
        calls["n"] += 1
        if calls["n"] == 3:
            raise MemoryError("simulated")
        return real_allocate(size)

    monkeypatch.setattr(scratch, "_allocate", flaky_allocate)

    with caplog.at_level(logging.ERROR, logger="poismf.optimizer"):
        with pytest.raises(scratch.ResourceExhaustedError):
            _run(X, A, B, step_size=0.1, numiter=5, npass=2, ncores=4)

    assert np.array_equal(A, A0)
    assert np.array_equal(B, B0)
    assert any("Could not allocate memory" in r.getMessage() for r in caplog.records)


def test_run_poismf_flat_entry_point_updates_buffers_in_place():
    X = sp.csr_matrix(_random_counts(seed=10))
    Xc = X.tocsc()
    rng = np.random.default_rng(11)
    A = rng.uniform(0.1, 1.0, 8 * 2)
    B = rng.uniform(0.1, 1.0, 7 * 2)
    A_before = A.copy()

    result = optimizer.run_poismf(
        A, X.data, X.indptr, X.indices,
        B, Xc.data, Xc.indptr, Xc.indices,
        8, 7, 2,
        0.1, 0.0, False, 0.01,
        4, 2, 2,
    )

    assert result is None
    assert A.shape == (16,)
    assert not np.array_equal(A, A_before)
    assert np.all(A >= 0) and np.all(B >= 0)


def test_mismatched_views_are_rejected():
    X = _random_counts()
    Xr, Xc = _views(X)
    params = Hyperparameters(k=2, numiter=1)
    with pytest.raises(ValueError):
        optimizer.AlternatingOptimizer(params).run(
            FactorMatrix(np.ones((7, 2))), Xr, FactorMatrix(np.ones((7, 2))), Xc
        )


def test_hyperparameters_validation():
    pydantic = pytest.importorskip("pydantic")
    with pytest.raises(pydantic.ValidationError):
        Hyperparameters(k=0)
    with pytest.raises(pydantic.ValidationError):
        Hyperparameters(l2_reg=-1.0)
    assert Hyperparameters(ncores=0).n_workers >= 1
    assert math.isclose(Hyperparameters(step_size=0.5).step_size, 0.5)


def test_cg_with_single_evaluation_budget_still_improves():
    X = np.array([[3.0, 0.0, 1.0], [0.0, 2.0, 0.0], [1.0, 0.0, 4.0]])
    Xr, Xc = _views(X)
    A = np.full((3, 2), 0.5)
    B = np.full((3, 2), 0.5)
    A0, B0 = A.copy(), B.copy()
    before = objective.full_objective(A, B, Xr)

    params = Hyperparameters(k=2, use_cg=True, npass=1, numiter=20, l2_reg=0.0, l1_reg=0.0)
    optimizer.AlternatingOptimizer(params).run(FactorMatrix(A), Xr, FactorMatrix(B), Xc)

    assert not np.array_equal(A, A0)
    assert not np.array_equal(B, B0)
    assert objective.full_objective(A, B, Xr) < before


def test_row_sweeps_run_with_single_threaded_blas(monkeypatch):
    entered = []
    inside = {"active": False}

    @contextlib.contextmanager
    def recording_limits(limits=None, user_api=None):
        entered.append((limits, user_api))
        inside["active"] = True
        try:
            yield
        finally:
            inside["active"] = False

    monkeypatch.setattr(optimizer, "threadpool_limits", recording_limits)

    X = _random_counts()
    Xr, Xc = _views(X)
    rng = np.random.default_rng(12)
    A = rng.uniform(0.1, 1.0, (8, 2))
    B = rng.uniform(0.1, 1.0, (7, 2))
    during = []

    params = Hyperparameters(k=2, step_size=0.01, numiter=2, npass=1, ncores=2)
    opt = optimizer.AlternatingOptimizer(params, callback=lambda it, o: during.append(inside["active"]))
    opt.run(FactorMatrix(A), Xr, FactorMatrix(B), Xc)

    assert entered == [(1, "blas")]
    assert during == [True, True]
    assert inside["active"] is False


def test_debug_run_warns_about_negative_entries(caplog):
    class NegatingSolver(solvers.RowSolver):
        name = "negating"

        def scratch_width(self, k):
            return k

        def update_row(self, v, F, values, indices, cnst_sum, scratch):
            v[:] = -1.0

    X = _random_counts()
    Xr, Xc = _views(X)
    A = np.full((8, 2), 0.5)
    B = np.full((7, 2), 0.5)

    params = Hyperparameters(k=2, numiter=1, npass=1)
    opt = optimizer.AlternatingOptimizer(params, solver=NegatingSolver())
    with caplog.at_level(logging.DEBUG, logger="poismf.optimizer"):
        opt.run(FactorMatrix(A), Xr, FactorMatrix(B), Xc)

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("negative factor entries" in r.getMessage() for r in warnings)
