import os
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from .effects import EffectTable
from .errors import RenderError
from .model import STMModel

# Avoid negative signs rendering as boxes
plt.rcParams['axes.unicode_minus'] = False
sns.set_style('whitegrid')


def _save(fig, out_path: Optional[str]) -> Optional[str]:
    if out_path is not None:
        os.makedirs(os.path.dirname(out_path) or '.', exist_ok=True)
        fig.savefig(out_path, bbox_inches='tight')
    plt.close(fig)
    return out_path


def effect_chart_data(effects: EffectTable, topic: int, covariate: str,
                      reference_level: Optional[str] = None) -> pd.DataFrame:
    """Rows drawn by `plot_covariate_effects`, reference row included, sorted by estimate."""
    if not 1 <= topic <= effects.K:
        raise RenderError(f'topic {topic} outside [1, {effects.K}]')
    if reference_level is None and covariate not in effects.references:
        raise RenderError(f'covariate {covariate!r} has no reference level in the effects table; '
                          f'known: {sorted(effects.references)}')
    data = effects.covariate_effects(topic, covariate, reference_level)
    return data.sort_values('estimate', kind='mergesort').reset_index(drop=True)


def plot_covariate_effects(effects: EffectTable, topic: int, covariate: str,
                           reference_level: Optional[str] = None, title: Optional[str] = None,
                           xlabel: str = 'Efeito estimado na prevalência do tópico',
                           labels: Optional[Dict[str, str]] = None,
                           out_path: Optional[str] = None) -> Tuple[plt.Figure, Optional[str]]:
    """Point estimate +- 1.96 SE for every level of `covariate` in `topic`, sorted by estimate.

    The reference level is drawn as a zero-effect point. Returns the (closed)
    figure and the path it was saved to, or None.
    """
    data = effect_chart_data(effects, topic, covariate, reference_level)
    labels = labels or {}
    names = [labels.get(str(lv), str(lv)) for lv in data['level']]
    est = data['estimate'].to_numpy(dtype=float)
    half = 1.96 * data['std_error'].to_numpy(dtype=float)
    y = np.arange(len(data))
    is_ref = data['is_reference'].to_numpy(dtype=bool)

    fig, ax = plt.subplots(figsize=(8, max(2.5, 0.35 * len(data) + 1.5)), dpi=150)
    if (~is_ref).any():
        ax.errorbar(est[~is_ref], y[~is_ref], xerr=half[~is_ref], fmt='o', color='#2563eb',
                    ecolor='#93c5fd', elinewidth=2, capsize=3, label='Estimativa (IC 95%)')
    if is_ref.any():
        ax.plot(est[is_ref], y[is_ref], 'D', color='#ef4444', label='Referência')
    ax.axvline(0.0, color='#6b7280', lw=1, ls='--')
    ax.set_yticks(y)
    ax.set_yticklabels(names)
    ax.set_xlabel(xlabel, labelpad=10)
    ax.set_title(title or f'Tópico {topic}: efeito de {covariate}')
    ax.legend(loc='lower right', frameon=False)
    fig.tight_layout()
    return fig, _save(fig, out_path)


def plot_topic_summary(model: STMModel, out_path: Optional[str] = None, n: int = 3,
                       title: str = 'Proporção dos Tópicos no Corpus') -> plt.Figure:
    props = model.topic_proportions()
    top = model.label_topics(n=n)['prob']
    order = np.argsort(props)
    fig, ax = plt.subplots(figsize=(10, max(3, 0.4 * model.K + 1)), dpi=150)
    ax.barh(np.arange(model.K), props[order], color='#5178c6')
    ax.set_yticks(np.arange(model.K))
    ax.set_yticklabels([f'Tópico {k + 1}' for k in order])
    for i, k in enumerate(order):
        ax.text(props[k], i, '  ' + ', '.join(top[k]), va='center', fontsize=8)
    ax.set_xlim(0, props.max() * 1.8)
    ax.set_xlabel('Proporção esperada do tópico')
    ax.set_title(title)
    fig.tight_layout()
    _save(fig, out_path)
    return fig


def plot_search_k(results: pd.DataFrame, out_path: Optional[str] = None) -> plt.Figure:
    panels = [('heldout', 'Held-out likelihood'), ('semcoh', 'Semantic coherence'),
              ('exclusivity', 'Exclusivity'), ('bound', 'Lower bound')]
    fig, axes = plt.subplots(2, 2, figsize=(10, 8), dpi=150, constrained_layout=True)
    for ax, (col, name) in zip(axes.ravel(), panels):
        ax.plot(results['K'], results[col], 'o-', color='#10b981')
        ax.set_title(name)
        ax.set_xlabel('Número de tópicos (K)')
    fig.suptitle('Diagnósticos por número de tópicos', fontsize=14)
    _save(fig, out_path)
    return fig


def plot_bound_curve(bounds: List[float], out_path: Optional[str] = None) -> plt.Figure:
    fig, ax = plt.subplots(figsize=(10, 6), dpi=150)
    ax.plot(np.arange(1, len(bounds) + 1), bounds, color='#2563eb', lw=2)
    ax.set_title('Convergência do limite inferior aproximado')
    ax.set_xlabel('Iteração EM', labelpad=10)
    ax.set_ylabel('Limite inferior', labelpad=10)
    fig.tight_layout()
    _save(fig, out_path)
    return fig
