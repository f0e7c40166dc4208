import sys

from stm_cartas.config import load_config
from stm_cartas.pipeline import run_pipeline

"""
Runner for the letters analysis:
- Load the SAIC base and keep environment-related letters
- Normalize demographic covariates, preprocess and prune the text
- Optionally sweep K, then fit the STM and estimate covariate effects
- Save coefficients, topic labels and charts to the configured output_dir

Usage: python run_stm.py [config.json]
"""

CONFIG_PATH = 'configs/constituinte_k15.json'


def main():
    path = sys.argv[1] if len(sys.argv) > 1 else CONFIG_PATH
    cfg = load_config(path)
    result = run_pipeline(cfg)
    for name, p in result.artifacts.items():
        print(f'{name}: {p}')


if __name__ == '__main__':
    main()
