"""
viper_grn: Regulator activity inference from gene expression signatures
with VIPER and analytic rank-based enrichment analysis (aREA).

Analyses:
    1. signature        — Single-sample and reference signatures, null models
    2. area             — aREA enrichment of regulons in signatures
    3. null_calibration — Empirical NES from a permutation null model
    4. shadow           — Pleiotropy correction with shadow regulons
    5. bootstrap        — Bootstrap activity and its standard deviation
    6. viper            — Full pipeline and command-line entry point
"""

__version__ = "0.1.0"
