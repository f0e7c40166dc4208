# Structural Topic Model (STM) of letters sent to the Brazilian constituent assembly
# Keyword-filtered corpus, covariate-dependent topic prevalence estimated by
# Laplace variational EM, and per-topic covariate effects with composition uncertainty.

from .config import PipelineConfig, load_config
from .data import CorpusLoader, KeywordFilter, CovariateNormalizer
from .text import TextPreprocessor, VocabularyPruner, ProcessedCorpus, PreparedCorpus
from .model import STMModel
from .em import EMRunner, fit_stm
from .effects import EffectEstimator, EffectTable
from .evaluation import search_k
from .viz import effect_chart_data, plot_covariate_effects, plot_topic_summary
from .pipeline import run_pipeline
from .errors import ConfigurationError, DataError, ModelError, RenderError
