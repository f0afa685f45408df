"""Validated hyperparameters for one optimizer run."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from config.settings import settings


class Hyperparameters(BaseModel):
    k: int = Field(default=settings.POISMF_K, ge=1)
    l2_reg: float = Field(default=settings.POISMF_L2_REG, ge=0.0)
    l1_reg: float = Field(default=settings.POISMF_L1_REG, ge=0.0)
    step_size: float = Field(default=settings.POISMF_STEP_SIZE, gt=0.0)
    numiter: int = Field(default=settings.POISMF_NITER, ge=0)
    npass: int = Field(default=settings.POISMF_NPASS, ge=1)
    use_cg: bool = settings.POISMF_USE_CG
    # 0 or negative → all cores
    ncores: int = settings.POISMF_NCORES
    dot_eps: float = Field(default=settings.POISMF_DOT_EPS, gt=0.0)

    @property
    def n_workers(self) -> int:
        if self.ncores > 0:
            return self.ncores
        return os.cpu_count() or 1


__all__ = ["Hyperparameters"]
