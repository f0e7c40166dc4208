from dataclasses import dataclass
from typing import Dict, List

import numpy as np
import pandas as pd

from .errors import ConfigurationError, DataError


def parse_formula(formula: str) -> List[str]:
    """Additive right-hand side only: '~ uf + sexo' -> ['uf', 'sexo']."""
    if not isinstance(formula, str) or not formula.strip():
        raise ConfigurationError('empty prevalence formula')
    rhs = formula.strip()
    if '~' in rhs:
        lhs, rhs = rhs.split('~', 1)
        if lhs.strip():
            raise ConfigurationError(f'prevalence formula must be one-sided: {formula!r}')
    terms = [t.strip() for t in rhs.split('+')]
    if any(not t for t in terms):
        raise ConfigurationError(f'malformed prevalence formula: {formula!r}')
    for t in terms:
        if not t.isidentifier():
            raise ConfigurationError(f'only plain covariate names are supported, got {t!r}')
    return list(dict.fromkeys(terms))


@dataclass
class DesignMatrix:
    X: pd.DataFrame                   # D x P, first column 'intercept'
    covariates: List[str]
    term_covariate: Dict[str, str]    # encoded term -> covariate it comes from
    term_level: Dict[str, str]        # encoded term -> level (categoricals only)
    references: Dict[str, str]        # categorical covariate -> baseline level

    @property
    def terms(self) -> List[str]:
        return [c for c in self.X.columns if c != 'intercept']

    def values(self) -> np.ndarray:
        return self.X.to_numpy(dtype=np.float64)


def build_design_matrix(meta: pd.DataFrame, formula: str) -> DesignMatrix:
    """Treatment-coded design with intercept; term names are covariate + level (e.g. 'ufRJ')."""
    covariates = parse_formula(formula)
    missing = [c for c in covariates if c not in meta.columns]
    if missing:
        raise ConfigurationError(f'prevalence covariates not in metadata: {missing}')
    cols = {'intercept': np.ones(len(meta))}
    term_covariate: Dict[str, str] = {}
    term_level: Dict[str, str] = {}
    references: Dict[str, str] = {}
    for cov in covariates:
        s = meta[cov]
        if isinstance(s.dtype, pd.CategoricalDtype):
            if s.isna().any():
                raise DataError(f'covariate {cov!r} has missing values; normalize it first')
            # levels not present after filtering/pruning cannot be estimated
            observed = set(s.astype(object))
            levels = [lv for lv in s.cat.categories if lv in observed]
            ref = levels[0]
            references[cov] = str(ref)
            for lv in levels[1:]:
                name = f'{cov}{lv}'
                cols[name] = (s.astype(object) == lv).to_numpy(dtype=np.float64)
                term_covariate[name] = cov
                term_level[name] = str(lv)
        elif pd.api.types.is_numeric_dtype(s.dtype):
            if s.isna().any():
                raise DataError(f'covariate {cov!r} has missing values')
            cols[cov] = s.to_numpy(dtype=np.float64)
            term_covariate[cov] = cov
        else:
            raise DataError(f'covariate {cov!r} must be categorical or numeric, got {s.dtype}')
    X = pd.DataFrame(cols, index=meta.index)
    return DesignMatrix(X=X, covariates=covariates, term_covariate=term_covariate,
                        term_level=term_level, references=references)
