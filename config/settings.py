import os
from dotenv import load_dotenv

# Load .env when running locally
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings:
    # ─────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", os.path.join("logs", "poismf.log"))

    # ─────────────────────────────────────────────
    # Data / artifact locations (used by train_poismf.py)
    # ─────────────────────────────────────────────
    DATA_DIR = os.getenv("DATA_DIR", "data")
    ARTIFACT_DIR = os.getenv("ARTIFACT_DIR", "artifacts")

    # ─────────────────────────────────────────────
    # Factorization defaults
    # ─────────────────────────────────────────────
    POISMF_K = int(os.getenv("POISMF_K", 20))
    POISMF_L2_REG = float(os.getenv("POISMF_L2_REG", 1e-2))
    POISMF_L1_REG = float(os.getenv("POISMF_L1_REG", 0.0))
    POISMF_STEP_SIZE = float(os.getenv("POISMF_STEP_SIZE", 1e-3))
    POISMF_NITER = int(os.getenv("POISMF_NITER", 10))
    POISMF_NPASS = int(os.getenv("POISMF_NPASS", 1))
    POISMF_USE_CG = _env_bool("POISMF_USE_CG", "false")

    # 0 or negative → use every available core
    POISMF_NCORES = int(os.getenv("POISMF_NCORES", 1))

    # Lower bound applied to F_j · v before log / division
    POISMF_DOT_EPS = float(os.getenv("POISMF_DOT_EPS", 1e-10))


settings = Settings()
