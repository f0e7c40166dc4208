import json
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Dict, List, Optional

from .errors import ConfigurationError

UNKNOWN_LEVEL = 'NA_desconhecido'

KEYWORDS = [
    "meio ambiente", "ecologia", "ecologica", "ecológica", "ecologico", "ecológico",
    "flora", "fauna", "poluicao", "poluição",
]

COVARIATES = ['uf', 'sexo', 'morador', 'instrucao', 'estado_civil', 'faixa_etaria', 'atividade']


@dataclass
class LoaderConfig:
    path: str = 'Base SAIC.csv'
    encoding: str = 'latin-1'
    sep: str = ';'
    decimal: str = ','
    date_column: str = 'data'
    date_format: str = '%d/%m/%Y'


@dataclass
class FilterConfig:
    keywords: List[str] = field(default_factory=lambda: list(KEYWORDS))
    fields: List[str] = field(default_factory=lambda: ['catalogo'])
    text_column: str = 'sugestao_texto'


@dataclass
class CovariateConfig:
    columns: List[str] = field(default_factory=lambda: list(COVARIATES))
    unknown_level: str = UNKNOWN_LEVEL
    # column -> level used as regression baseline
    reference_levels: Dict[str, str] = field(default_factory=dict)


@dataclass
class TextConfig:
    language: str = 'portuguese'
    stem: bool = True
    lowercase: bool = True
    remove_punctuation: bool = True
    remove_numbers: bool = True
    remove_stopwords: bool = True
    custom_stopwords: List[str] = field(default_factory=lambda: ['sugiro', 'gostaria', 'constituinte'])
    min_word_length: int = 3
    # explicit stopword list; None means the nltk list for `language`
    stopwords: Optional[List[str]] = None


@dataclass
class PruneConfig:
    lower_thresh: int = 10
    upper_thresh: Optional[int] = None


@dataclass
class ModelConfig:
    K: int = 20
    prevalence: str = '~ uf + sexo + faixa_etaria + instrucao + morador + atividade'
    max_em_its: int = 75
    init_type: str = 'Spectral'
    emtol: float = 1e-5
    seed: int = 0


@dataclass
class EffectConfig:
    uncertainty: str = 'Global'
    nsims: int = 25
    draws_per_sim: int = 100
    seed: int = 0


@dataclass
class ChartSpec:
    topic: int
    covariate: str
    reference_level: Optional[str] = None
    title: Optional[str] = None
    xlabel: str = 'Efeito estimado na prevalência do tópico'
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class PipelineConfig:
    name: str = 'constituinte'
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    covariates: CovariateConfig = field(default_factory=CovariateConfig)
    text: TextConfig = field(default_factory=TextConfig)
    prune: PruneConfig = field(default_factory=PruneConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    effects: EffectConfig = field(default_factory=EffectConfig)
    charts: List[ChartSpec] = field(default_factory=list)
    search_k: List[int] = field(default_factory=list)
    # formula for the search_k sweep; None means model.prevalence
    search_prevalence: Optional[str] = None
    output_dir: Optional[str] = None
    verbose: bool = True


INIT_TYPES = ('Spectral', 'LDA', 'Random')
UNCERTAINTY_MODES = ('Global', 'Local', 'None')


def _build(cls, raw: dict, where: str):
    if not isinstance(raw, dict):
        raise ConfigurationError(f'{where}: expected an object, got {type(raw).__name__}')
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f'{where}: unknown keys {unknown}')
    try:
        return cls(**raw)
    except TypeError as e:
        raise ConfigurationError(f'{where}: {e}')


def config_from_dict(raw: dict) -> PipelineConfig:
    """Build a PipelineConfig from plain JSON-like data and validate it."""
    raw = dict(raw)
    nested = {
        'loader': LoaderConfig,
        'filter': FilterConfig,
        'covariates': CovariateConfig,
        'text': TextConfig,
        'prune': PruneConfig,
        'model': ModelConfig,
        'effects': EffectConfig,
    }
    for key, cls in nested.items():
        if key in raw:
            raw[key] = _build(cls, raw[key], key)
    if 'charts' in raw:
        if not isinstance(raw['charts'], list):
            raise ConfigurationError('charts must be a list')
        raw['charts'] = [_build(ChartSpec, c, f'charts[{i}]') for i, c in enumerate(raw['charts'])]
    cfg = _build(PipelineConfig, raw, 'config')
    validate_config(cfg)
    return cfg


def load_config(path: str) -> PipelineConfig:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f'config file not found: {path}')
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'invalid JSON in {path}: {e}')
    return config_from_dict(raw)


def config_to_dict(cfg) -> dict:
    if is_dataclass(cfg):
        return {f.name: config_to_dict(getattr(cfg, f.name)) for f in fields(cfg)}
    if isinstance(cfg, list):
        return [config_to_dict(c) for c in cfg]
    return cfg


def _is_int(value) -> bool:
    # JSON booleans are ints to Python
    return isinstance(value, int) and not isinstance(value, bool)


def _require_int(value, name: str, minimum: int) -> None:
    if not _is_int(value) or value < minimum:
        raise ConfigurationError(f'{name} must be an integer >= {minimum}, got {value!r}')


def validate_config(cfg: PipelineConfig) -> None:
    if not cfg.filter.keywords:
        raise ConfigurationError('keyword list is empty')
    if not cfg.filter.fields:
        raise ConfigurationError('no fields to search keywords in')
    _require_int(cfg.model.K, 'K', 2)
    _require_int(cfg.model.max_em_its, 'max_em_its', 1)
    _require_int(cfg.model.seed, 'model seed', 0)
    emtol = cfg.model.emtol
    if isinstance(emtol, bool) or not isinstance(emtol, (int, float)) or emtol <= 0:
        raise ConfigurationError(f'emtol must be a positive number, got {emtol!r}')
    if cfg.model.init_type not in INIT_TYPES:
        raise ConfigurationError(f'init_type must be one of {INIT_TYPES}, got {cfg.model.init_type!r}')
    if not isinstance(cfg.model.prevalence, str):
        raise ConfigurationError(f'prevalence must be a formula string, got {cfg.model.prevalence!r}')
    _require_int(cfg.prune.lower_thresh, 'lower_thresh', 1)
    if cfg.prune.upper_thresh is not None:
        _require_int(cfg.prune.upper_thresh, 'upper_thresh', cfg.prune.lower_thresh)
    if cfg.effects.uncertainty not in UNCERTAINTY_MODES:
        raise ConfigurationError(f'uncertainty must be one of {UNCERTAINTY_MODES}')
    _require_int(cfg.effects.nsims, 'nsims', 1)
    _require_int(cfg.effects.draws_per_sim, 'draws_per_sim', 1)
    _require_int(cfg.effects.seed, 'effects seed', 0)
    for chart in cfg.charts:
        if not _is_int(chart.topic) or not 1 <= chart.topic <= cfg.model.K:
            raise ConfigurationError(f'chart topic {chart.topic!r} outside [1, {cfg.model.K}]')
    if not isinstance(cfg.search_k, list):
        raise ConfigurationError(f'search_k must be a list, got {cfg.search_k!r}')
    for k in cfg.search_k:
        _require_int(k, 'search_k values', 2)
    if cfg.search_prevalence is not None and not isinstance(cfg.search_prevalence, str):
        raise ConfigurationError(f'search_prevalence must be a formula string, got {cfg.search_prevalence!r}')
