import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from .config import PipelineConfig, config_to_dict, validate_config
from .data import CorpusLoader, CovariateNormalizer, KeywordFilter
from .design import parse_formula
from .effects import EffectEstimator, EffectTable
from .em import fit_stm
from .evaluation import search_k
from .model import STMModel
from .text import PreparedCorpus, ProcessedCorpus, TextPreprocessor, VocabularyPruner
from .viz import plot_bound_curve, plot_covariate_effects, plot_search_k, plot_topic_summary


@dataclass
class PipelineResult:
    letters: pd.DataFrame
    processed: ProcessedCorpus
    prepared: PreparedCorpus
    model: STMModel
    effects: EffectTable
    search: Optional[pd.DataFrame] = None
    artifacts: Dict[str, str] = field(default_factory=dict)


def required_columns(cfg: PipelineConfig) -> List[str]:
    cols = [cfg.filter.text_column] + list(cfg.filter.fields) + list(cfg.covariates.columns)
    cols += parse_formula(cfg.model.prevalence)
    if cfg.search_k and cfg.search_prevalence:
        cols += parse_formula(cfg.search_prevalence)
    cols.append(cfg.loader.date_column)
    return list(dict.fromkeys(cols))


def prepare_corpus(cfg: PipelineConfig, df: Optional[pd.DataFrame] = None):
    """Stages 1-5: load, filter, normalize covariates, preprocess and prune."""
    loader = CorpusLoader(cfg.loader, required_columns(cfg))
    df = loader.load() if df is None else loader.prepare(df)
    if cfg.verbose:
        print(f'Loaded {len(df)} letters from {cfg.loader.path}')
    letters = KeywordFilter(cfg.filter).apply(df)
    if cfg.verbose:
        print(f'{len(letters)} letters match the keyword filter')
    letters = CovariateNormalizer(cfg.covariates).apply(letters)
    processed = TextPreprocessor(cfg.text).process(letters[cfg.filter.text_column].tolist(), letters)
    if cfg.verbose and processed.docs_removed:
        print(f'Removed {len(processed.docs_removed)} documents left empty by preprocessing')
    prepared = VocabularyPruner(cfg.prune).prune(processed)
    if cfg.verbose:
        print(f'Removing {len(prepared.words_removed)} of {len(processed.vocab)} terms '
              f'({prepared.tokens_removed} tokens) due to frequency')
        print(f'Removing {len(prepared.docs_removed)} documents with no words')
        print(f'Your corpus now has {len(prepared.documents)} documents, '
              f'{len(prepared.vocab)} terms and {int(prepared.wordcounts.sum())} document-term pairs')
    return letters, processed, prepared


def run_pipeline(cfg: PipelineConfig, df: Optional[pd.DataFrame] = None) -> PipelineResult:
    validate_config(cfg)
    letters, processed, prepared = prepare_corpus(cfg, df)

    search = None
    if cfg.search_k:
        search = search_k(prepared, cfg.search_k, cfg.model, prevalence=cfg.search_prevalence,
                          verbose=cfg.verbose)
        if cfg.verbose:
            print(search.to_string(index=False))

    model = fit_stm(prepared, cfg.model, verbose=cfg.verbose)
    if cfg.verbose:
        print(model.summary())
    effects = EffectEstimator(cfg.effects).estimate(model, prepared.meta, K=cfg.model.K,
                                                    documents=prepared.documents)
    result = PipelineResult(letters=letters, processed=processed, prepared=prepared,
                            model=model, effects=effects, search=search)
    if cfg.output_dir:
        result.artifacts = write_outputs(cfg, result)
    return result


def write_outputs(cfg: PipelineConfig, result: PipelineResult) -> Dict[str, str]:
    out = cfg.output_dir
    os.makedirs(out, exist_ok=True)
    paths = {}
    paths['effects'] = os.path.join(out, f'{cfg.name}_effects.csv')
    result.effects.long().to_csv(paths['effects'], index=False)
    paths['theta'] = os.path.join(out, f'{cfg.name}_theta.csv')
    result.model.theta_frame().to_csv(paths['theta'], index=False)
    paths['labels'] = os.path.join(out, f'{cfg.name}_topic_labels.json')
    with open(paths['labels'], 'w', encoding='utf-8') as f:
        json.dump(result.model.label_topics(), f, ensure_ascii=False, indent=2)
    paths['config'] = os.path.join(out, f'{cfg.name}_config.json')
    with open(paths['config'], 'w', encoding='utf-8') as f:
        json.dump(config_to_dict(cfg), f, ensure_ascii=False, indent=2)
    paths['summary'] = os.path.join(out, f'{cfg.name}_topic_summary.png')
    plot_topic_summary(result.model, paths['summary'])
    paths['bound'] = os.path.join(out, f'{cfg.name}_bound.png')
    plot_bound_curve(result.model.bound_history, paths['bound'])
    if result.search is not None:
        paths['search_k'] = os.path.join(out, f'{cfg.name}_search_k.png')
        plot_search_k(result.search, paths['search_k'])
        paths['search_k_csv'] = os.path.join(out, f'{cfg.name}_search_k.csv')
        result.search.to_csv(paths['search_k_csv'], index=False)
    for chart in cfg.charts:
        key = f'topic{chart.topic}_{chart.covariate}'
        paths[key] = os.path.join(out, f'{cfg.name}_{key}.png')
        plot_covariate_effects(result.effects, chart.topic, chart.covariate,
                               reference_level=chart.reference_level, title=chart.title,
                               xlabel=chart.xlabel, labels=chart.labels, out_path=paths[key])
    return paths
