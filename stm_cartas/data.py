import re
import unicodedata
from typing import Iterable, List

import numpy as np
import pandas as pd

from .config import LoaderConfig, FilterConfig, CovariateConfig
from .errors import ConfigurationError, DataError


def clean_names(columns: Iterable[str]) -> List[str]:
    """snake_case ASCII column names; duplicates get a numeric suffix (_2, _3...)."""
    out: List[str] = []
    seen = {}
    for col in columns:
        s = unicodedata.normalize('NFKD', str(col))
        s = s.encode('ascii', 'ignore').decode('ascii')
        s = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', s).lower()
        s = re.sub(r'[^a-z0-9]+', '_', s).strip('_')
        if not s:
            s = 'x'
        if s[0].isdigit():
            s = f'x{s}'
        n = seen.get(s, 0) + 1
        seen[s] = n
        out.append(s if n == 1 else f'{s}_{n}')
    return out


def trim_strings(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in df.columns:
        if df[col].dtype == object or pd.api.types.is_string_dtype(df[col].dtype):
            s = df[col].map(lambda v: v.strip() if isinstance(v, str) else v)
            df[col] = s.replace('', np.nan)
    return df


class CorpusLoader:
    """Reads the SAIC letters table and validates it against the required columns."""

    def __init__(self, config: LoaderConfig, required_columns: Iterable[str] = ()):
        self.config = config
        self.required_columns = list(dict.fromkeys(required_columns))

    def load(self) -> pd.DataFrame:
        cfg = self.config
        try:
            with open(cfg.path, 'r', encoding=cfg.encoding, newline='') as handle:
                df = pd.read_csv(handle, sep=cfg.sep, decimal=cfg.decimal, dtype=str,
                                 keep_default_na=True)
        except FileNotFoundError:
            raise DataError(f'input file not found: {cfg.path}')
        except UnicodeDecodeError as e:
            raise DataError(f'cannot decode {cfg.path} as {cfg.encoding}: {e}')
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            raise DataError(f'cannot parse {cfg.path}: {e}')
        except LookupError:
            raise DataError(f'unknown encoding {cfg.encoding!r}')
        return self.prepare(df)

    def prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        df = df.copy()
        df.columns = clean_names(df.columns)
        df = trim_strings(df)
        self.validate(df)
        if self.config.date_column in df.columns:
            parsed = pd.to_datetime(df[self.config.date_column], format=self.config.date_format,
                                    errors='coerce')
            df['data_formatada'] = parsed
            df['ano'] = parsed.dt.year.astype('Int64')
        return df.reset_index(drop=True)

    def validate(self, df: pd.DataFrame) -> None:
        missing = [c for c in self.required_columns if c not in df.columns]
        if missing:
            raise DataError(f'missing required columns {missing}; found {list(df.columns)}')


def build_keyword_pattern(keywords: Iterable[str]) -> re.Pattern:
    words = [k.strip() for k in keywords if k and k.strip()]
    if not words:
        raise ConfigurationError('keyword list is empty')
    return re.compile('|'.join(re.escape(w) for w in words), re.IGNORECASE)


class KeywordFilter:
    def __init__(self, config: FilterConfig):
        self.config = config
        self.pattern = build_keyword_pattern(config.keywords)
        if not config.fields:
            raise ConfigurationError('no fields to search keywords in')

    def mask(self, df: pd.DataFrame) -> pd.Series:
        missing = [f for f in self.config.fields if f not in df.columns]
        if missing:
            raise DataError(f'filter fields not in data: {missing}')
        hit = pd.Series(False, index=df.index)
        for col in self.config.fields:
            matched = df[col].map(lambda v: isinstance(v, str) and self.pattern.search(v) is not None)
            hit |= matched.astype(bool)
        return hit

    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df[self.mask(df)]
        text_col = self.config.text_column
        if text_col not in out.columns:
            raise DataError(f'text column {text_col!r} not in data')
        text = out[text_col]
        out = out[text.notna() & (text.astype(str).str.strip() != '')]
        if len(out) == 0:
            raise DataError('no records left after keyword filtering')
        return out.reset_index(drop=True)


class CovariateNormalizer:
    """Turns demographic fields into closed categoricals with an explicit unknown level."""

    def __init__(self, config: CovariateConfig):
        self.config = config
        for col in config.reference_levels:
            if col not in config.columns:
                raise ConfigurationError(f'reference level given for non-covariate {col!r}')

    def normalize_column(self, s: pd.Series, reference=None) -> pd.Series:
        unknown = self.config.unknown_level
        values = s.astype(object).where(s.notna(), unknown)
        values = values.map(lambda v: v if isinstance(v, str) else str(v))
        levels = sorted(set(values))
        if reference is not None:
            if reference not in levels:
                raise ConfigurationError(
                    f'reference level {reference!r} not found in {s.name!r} (levels: {levels})')
            levels.remove(reference)
            levels.insert(0, reference)
        return pd.Series(pd.Categorical(values, categories=levels), index=s.index, name=s.name)

    def apply(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in self.config.columns if c not in df.columns]
        if missing:
            raise DataError(f'covariate columns not in data: {missing}')
        out = df.copy()
        for col in self.config.columns:
            out[col] = self.normalize_column(out[col], self.config.reference_levels.get(col))
        return out
