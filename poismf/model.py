"""
model.py
PoisMF: estimator wrapper around the alternating optimizer.

Accepts either a pandas DataFrame of (UserId, ItemId, Count) triplets or a
scipy sparse matrix (users × items), builds the row- and column-grouped views,
initializes non-negative factors and runs the optimizer.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp

from config.settings import settings
from .optimizer import AlternatingOptimizer
from .params import Hyperparameters
from .solvers import optimize_single_row
from .views import FactorMatrix, SparseMatrixView

LOGGER = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["UserId", "ItemId", "Count"]


class NotFittedError(RuntimeError):
    """Raised when predictions are requested from a model that was never fit."""
    pass


class PoisMF:
    """
    Poisson matrix factorization with non-negative factors.

    user_factors (n_users × k) and item_factors (n_items × k) are set by
    ``fit``; the expected count for (u, i) is user_factors[u] · item_factors[i].
    """

    def __init__(
        self,
        k=settings.POISMF_K,
        l1_reg=settings.POISMF_L1_REG,
        l2_reg=settings.POISMF_L2_REG,
        niter=settings.POISMF_NITER,
        npass=settings.POISMF_NPASS,
        use_cg=settings.POISMF_USE_CG,
        step_size=settings.POISMF_STEP_SIZE,
        init_type="gamma",
        random_state=42,
        ncores=settings.POISMF_NCORES,
    ):
        if init_type not in ("gamma", "uniform"):
            raise ValueError("init_type must be 'gamma' or 'uniform'")

        self.params = Hyperparameters(
            k=k,
            l1_reg=l1_reg,
            l2_reg=l2_reg,
            numiter=niter,
            npass=npass,
            use_cg=use_cg,
            step_size=step_size,
            ncores=ncores,
        )
        self.init_type = init_type
        self.random_state = random_state

        self.user_factors: Optional[np.ndarray] = None
        self.item_factors: Optional[np.ndarray] = None
        self.user_codes: Optional[Dict] = None
        self.item_codes: Optional[Dict] = None
        self._item_ids: Optional[np.ndarray] = None
        self._Xr: Optional[sp.csr_matrix] = None
        self._item_sum: Optional[np.ndarray] = None

    # ─────────────────────────────────────────────
    # Input handling
    # ─────────────────────────────────────────────

    def _process_data(self, X) -> sp.coo_matrix:
        if isinstance(X, pd.DataFrame):
            missing = [c for c in REQUIRED_COLUMNS if c not in X.columns]
            if missing:
                raise ValueError(f"DataFrame is missing required columns: {missing}")
            if X.empty:
                raise ValueError("Input contains no interactions.")

            self.user_codes = {u: i for i, u in enumerate(X["UserId"].unique())}
            self.item_codes = {t: i for i, t in enumerate(X["ItemId"].unique())}
            self._item_ids = np.asarray(list(self.item_codes.keys()), dtype=object)

            rows = X["UserId"].map(self.user_codes).to_numpy()
            cols = X["ItemId"].map(self.item_codes).to_numpy()
            counts = X["Count"].to_numpy(dtype=np.float64)
            coo = sp.coo_matrix(
                (counts, (rows, cols)),
                shape=(len(self.user_codes), len(self.item_codes)),
            )
        elif sp.issparse(X):
            coo = sp.coo_matrix(X, dtype=np.float64)
            if coo.nnz == 0:
                raise ValueError("Input contains no interactions.")
            self.user_codes = None
            self.item_codes = None
            self._item_ids = None
        else:
            raise ValueError("X must be a pandas DataFrame or a scipy sparse matrix.")

        if np.any(coo.data < 0):
            raise ValueError("Counts must be non-negative.")
        return coo

    def _init_factors(self, rng: np.random.Generator, n: int) -> np.ndarray:
        shape = (n, self.params.k)
        if self.init_type == "gamma":
            M = rng.gamma(shape=1.0, scale=1.0, size=shape)
        else:
            M = rng.random(shape)
        return np.ascontiguousarray(M, dtype=np.float64)

    # ─────────────────────────────────────────────
    # Training
    # ─────────────────────────────────────────────

    def fit(self, X):
        coo = self._process_data(X)
        Xr = coo.tocsr()
        Xc = coo.tocsc()
        Xr.sum_duplicates()
        Xc.sum_duplicates()
        n_users, n_items = Xr.shape

        rng = np.random.default_rng(self.random_state)
        self.user_factors = self._init_factors(rng, n_users)
        self.item_factors = self._init_factors(rng, n_items)

        optimizer = AlternatingOptimizer(self.params)
        optimizer.run(
            FactorMatrix(self.user_factors),
            SparseMatrixView.from_scipy(Xr, "row"),
            FactorMatrix(self.item_factors),
            SparseMatrixView.from_scipy(Xc, "col"),
        )

        self._Xr = Xr
        self._item_sum = self.item_factors.sum(axis=0) + self.params.l1_reg
        LOGGER.info("PoisMF fit: %d users, %d items, %d non-zeros", n_users, n_items, Xr.nnz)
        return self

    # ─────────────────────────────────────────────
    # Predictions
    # ─────────────────────────────────────────────

    def _check_fitted(self) -> None:
        if self.user_factors is None or self.item_factors is None:
            raise NotFittedError("Model has not been fit yet.")

    def _lookup(self, ids, codes: Optional[Dict], n: int) -> np.ndarray:
        ids = np.atleast_1d(np.asarray(ids, dtype=object))
        if codes is None:
            out = np.array([int(x) if 0 <= int(x) < n else -1 for x in ids], dtype=np.int64)
        else:
            out = np.array([codes.get(x, -1) for x in ids], dtype=np.int64)
        return out

    def predict(self, user, item):
        """Expected counts for (user, item) pairs; NaN where either id is unknown."""
        self._check_fitted()
        scalar_input = np.isscalar(user) and np.isscalar(item)
        u = self._lookup(user, self.user_codes, self.user_factors.shape[0])
        i = self._lookup(item, self.item_codes, self.item_factors.shape[0])
        if u.shape[0] != i.shape[0]:
            raise ValueError("user and item must have the same length.")

        known = (u >= 0) & (i >= 0)
        out = np.full(u.shape[0], np.nan)
        out[known] = np.einsum(
            "ij,ij->i", self.user_factors[u[known]], self.item_factors[i[known]]
        )
        return float(out[0]) if scalar_input else out

    def topN(self, user, n: int = 10, exclude_seen: bool = True):
        """Ids of the n items with the highest expected count for ``user``."""
        self._check_fitted()
        uidx = self._lookup(user, self.user_codes, self.user_factors.shape[0])[0]
        if uidx < 0:
            raise ValueError(f"Unknown user: {user}")

        scores = self.item_factors @ self.user_factors[uidx]
        if exclude_seen:
            start, end = self._Xr.indptr[uidx], self._Xr.indptr[uidx + 1]
            scores[self._Xr.indices[start:end]] = -np.inf

        n = min(n, int(np.sum(np.isfinite(scores))))
        if n <= 0:
            return np.array([], dtype=object if self._item_ids is not None else np.int64)

        top = np.argpartition(-scores, n - 1)[:n]
        order = top[np.argsort(-scores[top])]
        if self._item_ids is not None:
            return self._item_ids[order]
        return order

    def predict_factors(self, items: Sequence, counts: Sequence[float]) -> np.ndarray:
        """
        Factors for a new user from their observed (item, count) pairs, with
        the item factors kept fixed. Unknown items are ignored.
        """
        self._check_fitted()
        idx = self._lookup(items, self.item_codes, self.item_factors.shape[0])
        counts = np.atleast_1d(np.asarray(counts, dtype=np.float64))
        if idx.shape[0] != counts.shape[0]:
            raise ValueError("items and counts must have the same length.")
        if np.any(counts < 0):
            raise ValueError("Counts must be non-negative.")

        keep = idx >= 0
        if not np.any(keep):
            raise ValueError("None of the items were seen during fit.")

        rng = np.random.default_rng(self.random_state)
        v = self._init_factors(rng, 1)[0].copy()
        optimize_single_row(
            v,
            counts[keep],
            idx[keep],
            self.item_factors,
            self._item_sum,
            self.params.l2_reg,
            dot_eps=self.params.dot_eps,
        )
        return v


__all__ = ["PoisMF", "NotFittedError", "REQUIRED_COLUMNS"]
