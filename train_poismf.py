"""
train_poismf.py: fit a Poisson factorization from an interactions file

Usage:
    python train_poismf.py data/interactions.parquet artifacts/poismf.joblib --k 20 --cg
"""

import argparse
import logging
import os
import sys

from config.settings import settings
from poismf.model_utils import ARTIFACT_DIR, DATA_DIR, build_poismf_model

# -------------------------
# Logging
# -------------------------
LOG_FILE = settings.LOG_FILE
os.makedirs(os.path.dirname(LOG_FILE) or ".", exist_ok=True)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler(sys.stdout),
    ],
)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Poisson matrix factorization (PGD / non-negative CG).")
    p.add_argument("interactions", nargs="?", default=str(DATA_DIR / "interactions.parquet"))
    p.add_argument("artifact", nargs="?", default=str(ARTIFACT_DIR / "poismf.joblib"))
    p.add_argument("--k", type=int, default=settings.POISMF_K)
    p.add_argument("--l1-reg", type=float, default=settings.POISMF_L1_REG)
    p.add_argument("--l2-reg", type=float, default=settings.POISMF_L2_REG)
    p.add_argument("--niter", type=int, default=settings.POISMF_NITER)
    p.add_argument("--npass", type=int, default=settings.POISMF_NPASS)
    p.add_argument("--step-size", type=float, default=settings.POISMF_STEP_SIZE)
    p.add_argument("--cg", action="store_true", default=settings.POISMF_USE_CG, help="Use conjugate gradient")
    p.add_argument("--ncores", type=int, default=settings.POISMF_NCORES)
    p.add_argument("--seed", type=int, default=42)
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.info("Training PoisMF from %s", args.interactions)

    try:
        artifact = build_poismf_model(
            args.interactions,
            args.artifact,
            k=args.k,
            l1_reg=args.l1_reg,
            l2_reg=args.l2_reg,
            niter=args.niter,
            npass=args.npass,
            step_size=args.step_size,
            use_cg=args.cg,
            ncores=args.ncores,
            random_state=args.seed,
        )
    except MemoryError:
        # already reported by the optimizer
        return 1

    logging.info("Model saved: %s", artifact)
    return 0


if __name__ == "__main__":
    sys.exit(main())
