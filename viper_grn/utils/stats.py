"""Shared statistical helpers for reporting regulator activity."""

from typing import Optional
import numpy as np
import pandas as pd
from scipy.stats import norm
from statsmodels.stats.multitest import multipletests


def nes_to_pvalue(nes: pd.DataFrame) -> pd.DataFrame:
    """Two-sided normal p-values of a NES matrix.

    NES from aREA (size-based or null-calibrated) is z-like under the null,
    so each entry maps to 2 · Φ(−|NES|).

    Args:
        nes: NES DataFrame (regulators × samples).

    Returns:
        DataFrame of p-values with the same shape.
    """
    return pd.DataFrame(
        2 * norm.sf(np.abs(nes.to_numpy(dtype=float))),
        index=nes.index,
        columns=nes.columns,
    )


# ── Activity table ────────────────────────────────────────────────────────────

def _long(df: pd.DataFrame, value_name: str) -> pd.DataFrame:
    return (
        df.rename_axis(index="regulator")
        .reset_index()
        .melt(id_vars="regulator", var_name="sample", value_name=value_name)
    )


def activity_table(
    nes: pd.DataFrame,
    sd: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Reshape a NES matrix into a long table with p-values and FDR.

    FDR is computed within each sample, across regulators.

    Args:
        nes: NES DataFrame (regulators × samples).
        sd: Optional bootstrap sd DataFrame with the same shape.

    Returns:
        DataFrame with columns regulator, sample, nes, [sd,] pvalue, FDR,
        neg_log10_FDR.
    """
    long = _long(nes, "nes")
    if sd is not None:
        long["sd"] = _long(sd.loc[nes.index, nes.columns], "sd")["sd"].to_numpy()
    long["pvalue"] = _long(nes_to_pvalue(nes), "pvalue")["pvalue"].to_numpy()
    if long.empty:
        long["FDR"] = pd.Series(dtype=float)
        long["neg_log10_FDR"] = pd.Series(dtype=float)
        return long
    return apply_bh_correction(long, pvalue_col="pvalue", group_cols=["sample"])


# ── Multiple-testing correction ───────────────────────────────────────────────

def _bh(pvals: pd.Series) -> np.ndarray:
    """BH-adjusted p-values; missing values count as 1."""
    _, fdr, _, _ = multipletests(pvals.fillna(1.0).to_numpy(dtype=float), method="fdr_bh")
    return fdr


def apply_bh_correction(
    df: pd.DataFrame,
    pvalue_col: str = "pvalue",
    group_cols: Optional[list] = None,
) -> pd.DataFrame:
    """Apply Benjamini-Hochberg FDR correction to a p-value column.

    Adds 'FDR' and 'neg_log10_FDR' columns. With group_cols, every group
    (e.g. one sample) is corrected on its own.

    Args:
        df: DataFrame containing a column of p-values.
        pvalue_col: Name of the column containing raw p-values.
        group_cols: Optional list of column names defining the groups.

    Returns:
        Copy of df with 'FDR' and 'neg_log10_FDR' columns added.
    """
    df = df.reset_index(drop=True)
    if group_cols:
        # a scalar key keeps group labels unwrapped
        key = group_cols[0] if len(group_cols) == 1 else list(group_cols)
        df["FDR"] = df.groupby(key, sort=False)[pvalue_col].transform(_bh)
    else:
        df["FDR"] = _bh(df[pvalue_col])

    df["neg_log10_FDR"] = -np.log10(df["FDR"].clip(lower=np.finfo(float).tiny))
    return df
