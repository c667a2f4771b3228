"""I/O helpers for loading expression data, regulons and configuration."""

from pathlib import Path
from typing import Optional
import numpy as np
import pandas as pd
import yaml

from ..regulon import Regulon


# ── Expression input ──────────────────────────────────────────────────────────

def load_h5ad(path: str | Path) -> pd.DataFrame:
    """Load an AnnData h5ad file as a genes × samples DataFrame.

    AnnData stores observations (cells or samples) in rows, so the matrix is
    transposed.

    Args:
        path: Path to the .h5ad file.

    Returns:
        DataFrame indexed by var names with one column per observation.
    """
    import scanpy as sc

    adata = sc.read_h5ad(str(path))
    X = adata.X.toarray() if hasattr(adata.X, "toarray") else np.asarray(adata.X)
    return pd.DataFrame(X.T, index=adata.var_names, columns=adata.obs_names)


def load_expression(path: str | Path) -> pd.DataFrame:
    """Load an expression or signature matrix (genes × samples).

    CSV and TSV files must have gene identifiers in the first column; .h5ad
    files are read with scanpy.

    Args:
        path: Path to a .csv, .tsv/.txt or .h5ad file.

    Returns:
        Float DataFrame with genes as the index and samples as columns.
    """
    path = Path(path)
    if path.suffix == ".h5ad":
        return load_h5ad(path)
    sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    return pd.read_csv(path, sep=sep, index_col=0).astype(float)


def save_matrix(df: pd.DataFrame, path: str | Path) -> None:
    """Save a matrix to CSV, creating parent directories."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path)


# ── Regulon input/output ──────────────────────────────────────────────────────

def load_regulon(path: str | Path, sep: Optional[str] = None) -> Regulon:
    """Load a regulon from an adjacency table.

    Args:
        path: Path to a CSV/TSV with columns ['TF', 'target'] and optionally
            'mode' and 'likelihood'.
        sep: Column separator; inferred from the suffix when None.

    Returns:
        Regulon in first-appearance order of TFs.

    Raises:
        ValueError: If required columns are missing.
    """
    path = Path(path)
    if sep is None:
        sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    df = pd.read_csv(path, sep=sep)
    required = {"TF", "target"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Regulon file missing columns: {missing}")
    return Regulon.from_adjacency(df)


def save_regulon(regulon: Regulon, path: str | Path) -> None:
    """Save a regulon as an adjacency CSV.

    Args:
        regulon: Regulon to write.
        path: Output path for the CSV file.
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    regulon.to_adjacency().to_csv(path, index=False)


# ── Configuration ─────────────────────────────────────────────────────────────

def load_config(path: str | Path) -> dict:
    """Load a YAML configuration file.

    An empty file gives an empty config. Sections such as 'paths' and
    'viper' are read by the pipeline with defaults for missing keys.

    Args:
        path: Path to a YAML config file.

    Returns:
        Dictionary of configuration sections.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the top level of the file is not a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        cfg = yaml.safe_load(f)
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Config {path} must hold a mapping of sections, got {type(cfg).__name__}.")
    return cfg
