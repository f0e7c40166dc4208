from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats

from .config import EffectConfig
from .design import DesignMatrix, build_design_matrix
from .errors import ConfigurationError, DataError
from .model import STMModel
from .variational import make_pd

COLUMNS = ['topic', 'covariate', 'term', 'level', 'estimate', 'std_error', 't_value', 'p_value']


@dataclass
class EffectTable:
    """Long-format regression results of topic prevalence on covariates.

    coefficients: one row per (topic, non-reference term); intercepts: one row
    per topic; baselines: one zero-effect row per (topic, categorical covariate)
    for the reference level that treatment coding leaves out.
    """
    coefficients: pd.DataFrame
    intercepts: pd.DataFrame
    baselines: pd.DataFrame
    K: int
    references: Dict[str, str]
    uncertainty: str

    def covariate_effects(self, topic: int, covariate: str,
                          reference_level: Optional[str] = None) -> pd.DataFrame:
        """Coefficients of one covariate for one topic, reference row included."""
        c = self.coefficients
        rows = c[(c['topic'] == topic) & c['term'].str.startswith(covariate)]
        if covariate in set(c['covariate']):
            rows = rows[rows['covariate'] == covariate]
        rows = rows.copy()
        rows['is_reference'] = False
        if reference_level is None:
            b = self.baselines
            base = b[(b['topic'] == topic) & (b['covariate'] == covariate)].copy()
        else:
            base = pd.DataFrame([baseline_row(topic, covariate, reference_level)])
        base['is_reference'] = True
        parts = [p for p in (rows, base) if len(p)]
        if not parts:
            return pd.DataFrame(columns=COLUMNS + ['is_reference'])
        return pd.concat(parts, ignore_index=True)

    def long(self) -> pd.DataFrame:
        return pd.concat([self.intercepts, self.coefficients, self.baselines], ignore_index=True)


def baseline_row(topic: int, covariate: str, level: str) -> dict:
    return {'topic': topic, 'covariate': covariate, 'term': f'{covariate}{level}', 'level': level,
            'estimate': 0.0, 'std_error': 0.0, 't_value': np.nan, 'p_value': np.nan}


class EffectEstimator:
    """Per-topic OLS of topic proportions on the prevalence covariates.

    With uncertainty 'Global' or 'Local' the regression is repeated on theta
    draws from each document's approximate posterior (method of composition),
    and coefficient draws from every fit are pooled.
    """

    def __init__(self, config: EffectConfig):
        if config.uncertainty not in ('Global', 'Local', 'None'):
            raise ConfigurationError(f'unknown uncertainty mode {config.uncertainty!r}')
        self.config = config

    def theta_draw(self, model: STMModel, nus, rng: np.random.Generator) -> np.ndarray:
        eta = np.empty_like(model.eta)
        for d in range(model.D):
            L = np.linalg.cholesky(nus[d])
            eta[d] = model.eta[d] + L @ rng.standard_normal(model.K - 1)
        return model.eta_to_theta(eta)

    def local_nus(self, model: STMModel, dtm):
        siginv = model.sigma_inv()
        out = []
        for d, counts in enumerate(dtm):
            words = np.fromiter(counts.keys(), dtype=np.int64, count=len(counts))
            c = np.fromiter(counts.values(), dtype=np.float64, count=len(counts))
            H = model.hessian_objective(model.eta[d], words, c, siginv)
            out.append(np.linalg.inv(make_pd(-H)))
        return out

    def estimate(self, model: STMModel, meta: pd.DataFrame, formula: Optional[str] = None,
                 K: Optional[int] = None, documents=None) -> EffectTable:
        if K is not None and K != model.K:
            raise ConfigurationError(f'model has {model.K} topics, {K} requested')
        if len(meta) != model.D:
            raise DataError(f'{len(meta)} metadata rows for a model of {model.D} documents')
        design = model.design if formula is None else build_design_matrix(meta, formula)
        X = design.X
        cfg = self.config
        rng = np.random.default_rng(cfg.seed)
        P = X.shape[1]
        dof = max(model.D - P, 1)

        rows = []
        if cfg.uncertainty == 'None':
            theta = model.theta
            for k in range(model.K):
                res = sm.OLS(theta[:, k], X).fit()
                for term in X.columns:
                    rows.append(self._row(design, k + 1, term, res.params[term], res.bse[term],
                                          res.tvalues[term], res.pvalues[term]))
        else:
            if cfg.uncertainty == 'Local':
                if documents is None:
                    raise ConfigurationError("uncertainty='Local' needs the model's documents")
                nus = self.local_nus(model, documents)
            else:
                nus = model.nu
            nus = [make_pd(nu, 1e-10) for nu in nus]
            draws = [[] for _ in range(model.K)]
            for _ in range(cfg.nsims):
                theta = self.theta_draw(model, nus, rng)
                for k in range(model.K):
                    res = sm.OLS(theta[:, k], X).fit()
                    cov = np.asarray(res.cov_params())
                    draws[k].append(rng.multivariate_normal(np.asarray(res.params), cov,
                                                            size=cfg.draws_per_sim, method='eigh'))
            for k in range(model.K):
                sims = np.vstack(draws[k])
                est = sims.mean(axis=0)
                se = sims.std(axis=0, ddof=1) if len(sims) > 1 else np.zeros(P)
                for j, term in enumerate(X.columns):
                    t = est[j] / se[j] if se[j] > 0 else np.nan
                    p = 2 * stats.t.sf(abs(t), dof) if np.isfinite(t) else np.nan
                    rows.append(self._row(design, k + 1, term, est[j], se[j], t, p))

        table = pd.DataFrame(rows, columns=COLUMNS)
        intercepts = table[table['term'] == 'intercept'].reset_index(drop=True)
        coefficients = table[table['term'] != 'intercept'].reset_index(drop=True)
        baselines = pd.DataFrame(
            [baseline_row(k + 1, cov, ref) for k in range(model.K) for cov, ref in design.references.items()],
            columns=COLUMNS)
        return EffectTable(coefficients=coefficients, intercepts=intercepts, baselines=baselines,
                           K=model.K, references=dict(design.references), uncertainty=cfg.uncertainty)

    @staticmethod
    def _row(design: DesignMatrix, topic, term, est, se, t, p) -> dict:
        return {'topic': topic, 'covariate': design.term_covariate.get(term, term), 'term': term,
                'level': design.term_level.get(term), 'estimate': float(est), 'std_error': float(se),
                't_value': float(t), 'p_value': float(p)}
