"""VIPER: regulator activity inference by enriched regulon analysis.

Infers the activity of every regulator in every sample by testing whether the
regulator's targets are coherently shifted in the sample's signature.

Pipeline:
  1. Build single-sample signatures (scale, rank, mad, ttest or none), or use
     a test-vs-reference signature with its permutation null model.
  2. Restrict the signature to interactome genes and the regulon to genes of
     the signature; drop regulators below the minimum size.
  3. Score every regulator with aREA (analytic rank-based enrichment).
  4. Normalize: size-based NES by default, or empirical NES when a null model
     is available.
  5. Optionally correct for pleiotropy (shadow regulons), or estimate the
     activity and its sd by bootstrapping samples instead of steps 1 and 3–4.

Outputs of the CLI:
  - viper_nes.csv      regulators × samples activity matrix
  - viper_sd.csv       bootstrap sd (only with --bootstraps)
  - viper_activity.csv long table with two-sided p-values and BH FDR per sample

Usage:
    python -m viper_grn.viper --config configs/default_config.yaml \\
        --expression-file data/expression.csv \\
        --regulon-file data/regulon.csv \\
        --output-dir results/viper/
"""

import argparse
import logging
import warnings
from pathlib import Path
from typing import Optional

import pandas as pd

from .area import area, empty_result
from .bootstrap import BootstrapResult, bootstrap_viper
from .errors import ConflictingOptionsWarning, InputShapeError
from .null_calibration import null_model_nes
from .regulon import Regulon
from .shadow import PleiotropyArgs, pleiotropy_correction
from .signature import (
    SIGNATURE_METHODS,
    ViperSignature,
    as_signature_frame,
    compute_signature,
    viper_signature,
)
from .utils.io import load_config, load_expression, load_regulon, save_matrix
from .utils.stats import activity_table

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)


def _warn(msg: str) -> None:
    warnings.warn(msg, ConflictingOptionsWarning, stacklevel=3)
    log.warning(msg)


# ── Input normalization ───────────────────────────────────────────────────────

def _align_null(dnull, genes: pd.Index) -> pd.DataFrame:
    dnull = as_signature_frame(dnull)
    missing = genes.difference(dnull.index)
    if len(missing):
        raise InputShapeError(
            f"Null model lacks {len(missing)} genes of the signature, "
            f"e.g. {missing[:5].tolist()}"
        )
    return dnull.loc[genes]


# ── Full pipeline ─────────────────────────────────────────────────────────────

def viper(
    eset,
    regulon: Regulon,
    dnull: Optional[pd.DataFrame] = None,
    pleiotropy: bool = False,
    nes: bool = True,
    method: str = "scale",
    bootstraps: int = 0,
    minsize: int = 25,
    adaptive_size: bool = False,
    eset_filter: bool = True,
    pleiotropy_args: Optional[PleiotropyArgs] = None,
    n_workers: int = 1,
    seed=None,
):
    """Infer regulator activity for every sample.

    Args:
        eset: Expression DataFrame (genes × samples), a Series for a single
            sample, or a ViperSignature from viper_signature().
        regulon: Regulon to score.
        dnull: Optional null model (genes × permutations) for empirical NES.
        pleiotropy: Whether to apply the shadow-regulon pleiotropy correction.
        nes: If False, return raw enrichment scores.
        method: Single-sample signature method ('scale', 'rank', 'mad',
            'ttest', 'none'). Ignored for ViperSignature input.
        bootstraps: Number of bootstrap iterations; 0 disables bootstrapping.
        minsize: Minimum number of targets per regulator.
        adaptive_size: Measure regulon size as the sum of normalized
            likelihoods.
        eset_filter: Keep only genes that are regulators or targets.
        pleiotropy_args: Parameters of the pleiotropy correction.
        n_workers: Worker count for parallel steps.
        seed: Seed or numpy Generator for bootstrap resampling.

    Returns:
        Activity DataFrame (regulators × samples), or a BootstrapResult when
        bootstraps > 0. Zero rows if no regulator passes the size filter.

    Raises:
        InputShapeError: If the signature shares no gene with the regulon, or
            the null model does not cover the signature genes.
    """
    from_signature = isinstance(eset, ViperSignature)
    if from_signature:
        dnull = eset.nullmodel
        eset = eset.signature
        method = "none"
    if bootstraps > 0 and (from_signature or dnull is not None):
        bootstraps = 0
        _warn("Using a null model, bootstraps iterations are ignored.")
    if pleiotropy and bootstraps > 0:
        bootstraps = 0
        _warn("Using pleiotropic correction, bootstraps iterations are ignored.")
    if method not in SIGNATURE_METHODS:
        raise ValueError(
            f"Unknown method '{method}'. Choose: {', '.join(SIGNATURE_METHODS)}."
        )

    eset = as_signature_frame(eset)
    if eset_filter:
        eset = eset[eset.index.isin(list(regulon.genes()))]
    if eset.empty or not eset.index.isin(regulon.targets()).any():
        raise InputShapeError("The signature shares no gene with the regulon targets.")

    log.info("Computing the association scores")
    regulon = regulon.filter(eset.index, minsize=minsize, adaptive_size=adaptive_size)
    if not len(regulon):
        log.warning("No regulator has at least %s targets; returning empty result.", minsize)
        empty = empty_result(eset.columns)
        if bootstraps > 0:
            return BootstrapResult(nes=empty.nes, sd=empty.es)
        return empty.nes

    if bootstraps > 0:
        return bootstrap_viper(
            eset, regulon, bootstraps=bootstraps, nes=nes, n_workers=n_workers, seed=seed
        )

    tt = compute_signature(eset, method)
    log.info("Computing regulons enrichment with aREA")
    res = area(tt, regulon, minsize=0, n_workers=n_workers)
    if not nes:
        if pleiotropy:
            _warn("No pleiotropy correction implemented when raw es is returned.")
        return res.es

    if dnull is None:
        activity = res.nes
    else:
        dnull = _align_null(dnull, eset.index)
        activity = null_model_nes(res.es, dnull, regulon, n_workers=n_workers)

    if pleiotropy:
        activity = pleiotropy_correction(
            activity, tt, regulon, args=pleiotropy_args, dnull=dnull, n_workers=n_workers
        )
    return activity


def run_viper_pipeline(
    expression_path: str | Path,
    regulon_path: str | Path,
    output_dir: str | Path,
    ref_samples: Optional[list[str]] = None,
    reference_method: str = "ttest",
    permutations: int = 1000,
    method: str = "scale",
    minsize: int = 25,
    adaptive_size: bool = False,
    eset_filter: bool = True,
    pleiotropy: bool = False,
    pleiotropy_args: Optional[PleiotropyArgs] = None,
    bootstraps: int = 0,
    n_workers: int = 1,
    seed: int = 1,
) -> dict:
    """Load inputs, run VIPER and write the activity outputs.

    Args:
        expression_path: Expression matrix (.csv, .tsv or .h5ad).
        regulon_path: Regulon adjacency table.
        output_dir: Directory for all outputs.
        ref_samples: Optional reference sample names. When given, the other
            samples are scored against them with viper_signature().
        reference_method: Signature method against the reference group.
        permutations: Permutations for the reference null model.
        method: Single-sample signature method (no reference group).
        minsize: Minimum regulon size.
        adaptive_size: Use likelihood-weighted regulon size.
        eset_filter: Restrict the expression matrix to interactome genes.
        pleiotropy: Apply the pleiotropy correction.
        pleiotropy_args: Parameters of the pleiotropy correction.
        bootstraps: Bootstrap iterations (0 disables).
        n_workers: Worker count.
        seed: Random seed for permutations and bootstraps.

    Returns:
        Dict with keys 'nes' (DataFrame), 'activity' (long DataFrame) and,
        with bootstraps, 'sd' (DataFrame).
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    eset = load_expression(expression_path)
    regulon = load_regulon(regulon_path)
    log.info("Loaded %d genes × %d samples and %d regulators", *eset.shape, len(regulon))

    if ref_samples:
        missing = set(ref_samples) - set(eset.columns)
        if missing:
            raise ValueError(f"Reference samples not in expression matrix: {sorted(missing)}")
        is_ref = eset.columns.isin(ref_samples)
        eset = viper_signature(
            eset.loc[:, ~is_ref], eset.loc[:, is_ref],
            method=reference_method, per=permutations, seed=seed, n_workers=n_workers,
        )

    res = viper(
        eset, regulon,
        pleiotropy=pleiotropy, method=method, bootstraps=bootstraps,
        minsize=minsize, adaptive_size=adaptive_size, eset_filter=eset_filter,
        pleiotropy_args=pleiotropy_args, n_workers=n_workers, seed=seed,
    )

    result = {}
    if isinstance(res, BootstrapResult):
        result["nes"], result["sd"] = res.nes, res.sd
        save_matrix(res.sd, output_dir / "viper_sd.csv")
    else:
        result["nes"] = res
    save_matrix(result["nes"], output_dir / "viper_nes.csv")
    log.info("Activity matrix saved (%d regulators × %d samples)", *result["nes"].shape)

    result["activity"] = activity_table(result["nes"], result.get("sd"))
    result["activity"].to_csv(output_dir / "viper_activity.csv", index=False)
    log.info(
        "Activity table saved: %d regulator × sample pairs, %d with FDR < 0.05",
        len(result["activity"]), int((result["activity"]["FDR"] < 0.05).sum()),
    )
    return result


# ── CLI ───────────────────────────────────────────────────────────────────────

def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Infer regulator activity with VIPER (aREA enrichment of regulons)."
    )
    parser.add_argument("--config", help="Path to YAML config file.")
    parser.add_argument("--expression-file", help="Expression matrix (.csv, .tsv, .h5ad).")
    parser.add_argument("--regulon-file", help="Regulon adjacency table (TF, target, mode, likelihood).")
    parser.add_argument("--output-dir", required=True, help="Output directory.")
    parser.add_argument("--method", default="scale", choices=list(SIGNATURE_METHODS))
    parser.add_argument(
        "--ref-samples", nargs="+", metavar="SAMPLE",
        help="Reference samples; the others are scored against them.",
    )
    parser.add_argument("--reference-method", default="ttest", choices=["ttest", "zscore", "mean"])
    parser.add_argument("--permutations", type=int, default=1000)
    parser.add_argument("--minsize", type=int, default=25)
    parser.add_argument("--adaptive-size", action="store_true")
    parser.add_argument("--no-eset-filter", action="store_true")
    parser.add_argument("--pleiotropy", action="store_true")
    parser.add_argument("--bootstraps", type=int, default=0)
    parser.add_argument("--n-workers", type=int, default=1)
    parser.add_argument("--seed", type=int, default=1)
    args = parser.parse_args(argv)

    cfg = load_config(args.config) if args.config else {}
    vp_cfg = cfg.get("viper", {})
    paths_cfg = cfg.get("paths", {})

    expression_path = args.expression_file or paths_cfg.get("expression_file")
    regulon_path = args.regulon_file or paths_cfg.get("regulon_file")
    if not expression_path or not regulon_path:
        parser.error("an expression file and a regulon file are required")

    run_viper_pipeline(
        expression_path=expression_path,
        regulon_path=regulon_path,
        output_dir=args.output_dir,
        ref_samples=args.ref_samples or vp_cfg.get("ref_samples"),
        reference_method=vp_cfg.get("reference_method", args.reference_method),
        permutations=vp_cfg.get("permutations", args.permutations),
        method=vp_cfg.get("method", args.method),
        minsize=vp_cfg.get("minsize", args.minsize),
        adaptive_size=vp_cfg.get("adaptive_size", args.adaptive_size),
        eset_filter=vp_cfg.get("eset_filter", not args.no_eset_filter),
        pleiotropy=vp_cfg.get("pleiotropy", args.pleiotropy),
        pleiotropy_args=PleiotropyArgs(**vp_cfg.get("pleiotropy_args", {})),
        bootstraps=vp_cfg.get("bootstraps", args.bootstraps),
        n_workers=args.n_workers,
        seed=vp_cfg.get("seed", args.seed),
    )


if __name__ == "__main__":
    main()
