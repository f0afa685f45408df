"""
model_utils.py
Loading interaction data and persisting fitted factors.

This module handles:
  • Reading (UserId, ItemId, Count) interactions from parquet or CSV
  • Training a PoisMF model and dumping it as a joblib artifact
  • Loading that artifact back
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from config.settings import settings
from .model import REQUIRED_COLUMNS, PoisMF

LOGGER = logging.getLogger(__name__)

DATA_DIR = Path(settings.DATA_DIR)
ARTIFACT_DIR = Path(settings.ARTIFACT_DIR)


# ─────────────────────────────────────────────
# CUSTOM EXCEPTIONS
# ─────────────────────────────────────────────

class DataFormatError(ValueError):
    """Raised when the interactions file does not have the expected columns."""
    pass


def _resolve_path(path):
    return Path(path).expanduser().resolve()


def ensure_directory(path):
    p = _resolve_path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


# ─────────────────────────────────────────────
# INTERACTIONS
# ─────────────────────────────────────────────

def load_interactions(path: Path | str = DATA_DIR / "interactions.parquet") -> pd.DataFrame:
    path = _resolve_path(path)

    if not path.exists():
        raise FileNotFoundError(f"Interactions not found: {path}")

    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    elif path.suffix == ".csv":
        df = pd.read_csv(path)
    else:
        raise ValueError("Interactions must be parquet or csv")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise DataFormatError(f"Missing required columns: {missing}")

    df = df[REQUIRED_COLUMNS]
    LOGGER.info(
        "Loaded %d interactions (%d users, %d items) from %s",
        len(df), df["UserId"].nunique(), df["ItemId"].nunique(), path,
    )
    return df


# ─────────────────────────────────────────────
# ARTIFACTS
# ─────────────────────────────────────────────

def build_poismf_model(
    interactions_path: Path | str = DATA_DIR / "interactions.parquet",
    artifact_path: Path | str = ARTIFACT_DIR / "poismf.joblib",
    **params,
):
    import joblib

    df = load_interactions(interactions_path)
    if df.empty:
        raise RuntimeError("Interactions are empty.")

    model = PoisMF(**params).fit(df)

    artifact = _resolve_path(artifact_path)
    ensure_directory(artifact.parent)
    joblib.dump(
        {
            "user_factors": model.user_factors,
            "item_factors": model.item_factors,
            "u_codes": model.user_codes,
            "i_codes": model.item_codes,
            "params": dict(model.params),
        },
        artifact,
    )

    LOGGER.info("PoisMF model saved → %s", artifact)
    return artifact


def load_poismf_artifact(path=ARTIFACT_DIR / "poismf.joblib"):
    import joblib
    return joblib.load(_resolve_path(path))


__all__ = [
    "DataFormatError",
    "load_interactions",
    "build_poismf_model",
    "load_poismf_artifact",
    "ensure_directory",
    "DATA_DIR",
    "ARTIFACT_DIR",
]
