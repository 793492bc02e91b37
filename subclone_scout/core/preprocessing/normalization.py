"""Normalization and variance stabilization.

Two methods are provided:

- ``glm_residuals``: every gene is fitted with its own GLM (negative
  binomial with fixed overdispersion, or Poisson) of raw counts on
  log10 library size plus the requested covariates. Clipped Pearson
  residuals become the stabilized expression in ``X``. A gene whose fit
  fails is recorded as a :class:`ConvergenceFailure` and falls back to
  offset-only analytic residuals; the batch never aborts.
- ``log1p``: library-size normalization followed by ``log1p``, with
  optional covariate regression through ``scanpy.pp.regress_out``.

Both write ``layers['lognorm']`` for downstream marker scoring.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ConfigurationError, ConvergenceFailure
from .config import NormalizationConfig


@dataclass
class NormalizationResult:
    """Result from normalizing a container.

    Attributes
    ----------
    adata : AnnData
        New container with stabilized values in X
    method : str
        Method used
    n_genes_fitted : int
        Genes that went through a per-gene fit
    failures : List[ConvergenceFailure]
        Genes whose fit failed and used the fallback residuals
    covariates : List[str]
        Covariates actually regressed out
    """

    adata: Any = None
    method: str = ""
    n_genes_fitted: int = 0
    failures: List[ConvergenceFailure] = field(default_factory=list)
    covariates: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "method": self.method,
            "n_genes_fitted": self.n_genes_fitted,
            "n_failed": len(self.failures),
            "failed_genes": [f.gene for f in self.failures],
            "covariates": list(self.covariates),
        }


class GeneFitError(RuntimeError):
    """Raised inside a per-gene fit when the GLM does not converge."""


def _fit_gene_glm(
    y: np.ndarray,
    design: np.ndarray,
    family: str,
    nb_alpha: float,
) -> np.ndarray:
    """Fit one gene and return fitted means.

    Raises
    ------
    GeneFitError
        If IRLS does not converge or returns non-finite means
    """
    import statsmodels.api as sm
    from statsmodels.tools.sm_exceptions import ConvergenceWarning

    if family == "poisson":
        glm_family = sm.families.Poisson()
    else:
        glm_family = sm.families.NegativeBinomial(alpha=nb_alpha)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        fit = sm.GLM(y, design, family=glm_family).fit(maxiter=100)

    if any(issubclass(w.category, ConvergenceWarning) for w in caught):
        raise GeneFitError("IRLS did not converge")
    if not getattr(fit, "converged", True):
        raise GeneFitError("IRLS did not converge")

    mu = np.asarray(fit.mu, dtype=float)
    if not np.all(np.isfinite(mu)):
        raise GeneFitError("non-finite fitted means")
    return mu


def _pearson_residuals(
    y: np.ndarray, mu: np.ndarray, nb_alpha: float, family: str, clip: float
) -> np.ndarray:
    alpha = 0.0 if family == "poisson" else nb_alpha
    variance = mu + alpha * mu ** 2
    resid = np.zeros_like(mu)
    ok = variance > 0
    resid[ok] = (y[ok] - mu[ok]) / np.sqrt(variance[ok])
    return np.clip(resid, -clip, clip)


def _gene_residuals(
    gene: str,
    y: np.ndarray,
    design: np.ndarray,
    fallback_mu: np.ndarray,
    family: str,
    nb_alpha: float,
    clip: float,
) -> Tuple[np.ndarray, Optional[ConvergenceFailure]]:
    """Residuals for one gene, falling back to analytic residuals on failure."""
    failure = None
    try:
        mu = _fit_gene_glm(y, design, family, nb_alpha)
    except (GeneFitError, np.linalg.LinAlgError, ValueError, FloatingPointError) as exc:
        failure = ConvergenceFailure(gene=gene, reason=f"{type(exc).__name__}: {exc}")
        mu = fallback_mu
    return _pearson_residuals(y, mu, nb_alpha, family, clip), failure


class Normalizer:
    """Variance-stabilizing normalizer.

    Parameters
    ----------
    config : NormalizationConfig
        Normalization configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from subclone_scout.core.preprocessing import Normalizer, NormalizationConfig
    >>> normalizer = Normalizer(NormalizationConfig(regress_out=["mito_fraction"]))
    >>> result = normalizer.normalize(adata_qc)
    >>> result.failures  # genes that used the fallback
    []
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _counts(adata: Any) -> sparse.csr_matrix:
        base = adata.layers["counts"] if "counts" in adata.layers else adata.X
        return sparse.csr_matrix(base, dtype=np.float64)

    def check_covariates(self, adata: Any) -> List[str]:
        """Return usable covariates, raising for missing columns.

        Constant covariates are dropped with a warning since they make
        the design matrix singular.
        """
        missing = [c for c in self.config.regress_out if c not in adata.obs.columns]
        if missing:
            raise ConfigurationError(
                f"Covariates not found in obs: {missing}", source="normalization"
            )
        usable = []
        for col in self.config.regress_out:
            values = pd.to_numeric(adata.obs[col], errors="coerce")
            if values.isna().any():
                raise ConfigurationError(
                    f"Covariate '{col}' has missing or non-numeric values",
                    source="normalization",
                )
            if float(values.std()) == 0.0:
                self.logger.warning("Covariate '%s' is constant; not regressed", col)
                continue
            usable.append(col)
        return usable

    def lognorm(self, counts: sparse.csr_matrix) -> sparse.csr_matrix:
        """Library-size normalize to target_sum and apply log1p."""
        library = np.asarray(counts.sum(axis=1)).ravel()
        scale = np.zeros_like(library)
        scale[library > 0] = self.config.target_sum / library[library > 0]
        normalized = sparse.diags(scale) @ counts
        normalized = sparse.csr_matrix(normalized)
        normalized.data = np.log1p(normalized.data)
        return normalized.astype(np.float32)

    def build_design(self, adata: Any, counts: sparse.csr_matrix, covariates: List[str]) -> np.ndarray:
        """Design matrix: intercept, log10 library size, standardized covariates."""
        library = np.asarray(counts.sum(axis=1)).ravel()
        positive = library[library > 0]
        floor = positive.min() if positive.size else 1.0
        columns = [np.ones(adata.n_obs), np.log10(np.maximum(library, floor))]
        for col in covariates:
            values = pd.to_numeric(adata.obs[col]).to_numpy(dtype=float)
            columns.append((values - values.mean()) / values.std())
        return np.column_stack(columns)

    def normalize(self, adata: Any) -> NormalizationResult:
        """Normalize a container, returning a new one.

        Parameters
        ----------
        adata : AnnData
            QC-filtered container with raw counts (not modified)

        Returns
        -------
        NormalizationResult
            Result with the normalized container and per-gene failures
        """
        covariates = self.check_covariates(adata)
        out = adata.copy()
        counts = self._counts(out)
        out.layers["lognorm"] = self.lognorm(counts)

        if self.config.method == "log1p":
            result = self._normalize_log1p(out, covariates)
        else:
            result = self._normalize_glm(out, counts, covariates)

        out.uns["normalization"] = {
            "method": self.config.method,
            "family": self.config.family,
            "covariates": list(covariates),
            "n_failed": len(result.failures),
        }
        if result.failures:
            out.uns["normalization"]["failed_genes"] = [f.gene for f in result.failures]
        return result

    def _normalize_log1p(self, adata: Any, covariates: List[str]) -> NormalizationResult:
        import scanpy as sc

        adata.X = adata.layers["lognorm"].copy()
        if self.config.n_top_genes is not None:
            sc.pp.highly_variable_genes(
                adata, n_top_genes=min(self.config.n_top_genes, adata.n_vars), flavor="seurat"
            )
        else:
            adata.var["highly_variable"] = True
        if covariates:
            sc.pp.regress_out(adata, covariates)
        adata.var["residual_fitted"] = False
        adata.var["glm_failed"] = False
        self.logger.info("Applied log1p normalization (regressed: %s)", covariates or "none")
        return NormalizationResult(adata=adata, method="log1p", covariates=covariates)

    def _normalize_glm(
        self, adata: Any, counts: sparse.csr_matrix, covariates: List[str]
    ) -> NormalizationResult:
        cfg = self.config
        n_cells, n_genes = counts.shape
        clip = cfg.clip if cfg.clip is not None else float(np.sqrt(n_cells))

        design = self.build_design(adata, counts, covariates)
        library = np.asarray(counts.sum(axis=1)).ravel()
        gene_totals = np.asarray(counts.sum(axis=0)).ravel()
        grand_total = float(gene_totals.sum()) or 1.0
        cells_detected = np.asarray((counts > 0).sum(axis=0)).ravel()
        fitted = cells_detected >= cfg.min_cells

        self.logger.info(
            "Fitting %s GLM for %d/%d genes (covariates: %s, n_jobs=%d)",
            cfg.family,
            int(fitted.sum()),
            n_genes,
            covariates or "none",
            cfg.n_jobs,
        )

        csc = counts.tocsc()
        gene_idx = np.flatnonzero(fitted)
        var_names = adata.var_names

        def tasks():
            for j in gene_idx:
                y = csc[:, j].toarray().ravel()
                fallback_mu = library * gene_totals[j] / grand_total
                yield (str(var_names[j]), y, design, fallback_mu, cfg.family, cfg.nb_alpha, clip)

        if cfg.n_jobs == 1:
            outputs = [_gene_residuals(*args) for args in tasks()]
        else:
            from joblib import Parallel, delayed

            outputs = Parallel(n_jobs=cfg.n_jobs)(
                delayed(_gene_residuals)(*args) for args in tasks()
            )

        residuals = np.zeros((n_cells, n_genes), dtype=np.float32)
        failures: List[ConvergenceFailure] = []
        for j, (resid, failure) in zip(gene_idx, outputs):
            residuals[:, j] = resid
            if failure is not None:
                failures.append(failure)

        adata.X = residuals
        adata.var["residual_fitted"] = fitted
        adata.var["glm_failed"] = adata.var_names.isin([f.gene for f in failures])

        variance = residuals.var(axis=0)
        variance[~fitted] = -np.inf
        adata.var["residual_variance"] = np.where(fitted, variance, 0.0)
        if cfg.n_top_genes is not None:
            n_top = min(cfg.n_top_genes, int(fitted.sum()))
            top = np.argsort(-variance, kind="stable")[:n_top]
            hv = np.zeros(n_genes, dtype=bool)
            hv[top] = True
        else:
            hv = fitted.copy()
        adata.var["highly_variable"] = hv

        if failures:
            preview = ", ".join(f.gene for f in failures[:10])
            message = (
                f"{len(failures)} of {len(gene_idx)} genes failed to converge and used "
                f"fallback residuals: {preview}{' ...' if len(failures) > 10 else ''}"
            )
            self.logger.warning(message)
            from statsmodels.tools.sm_exceptions import ConvergenceWarning

            warnings.warn(message, ConvergenceWarning, stacklevel=2)

        self.logger.info(
            "GLM residuals computed (clip=%.1f, %d highly variable genes)", clip, int(hv.sum())
        )
        return NormalizationResult(
            adata=adata,
            method="glm_residuals",
            n_genes_fitted=len(gene_idx),
            failures=failures,
            covariates=covariates,
        )
