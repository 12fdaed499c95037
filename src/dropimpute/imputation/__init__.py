"""
Imputation methods, their registry, the multi-method runner and ensembles.

Examples:
    >>> from dropimpute.imputation import run_methods, compose_ensemble
    >>>
    >>> run = run_methods(matrix, ["baseline", "network"], method_params=params)
    >>> ensemble = compose_ensemble(choice, run.imputations)
"""

from dropimpute.imputation.base import (
    BASELINE,
    ENSEMBLE,
    NETWORK,
    FunctionMethod,
    ImputationContext,
    ImputationMethod,
    MethodRegistry,
    default_registry,
    normalize_method_name,
    register_method,
    shared_registry,
)
from dropimpute.imputation.baseline import BaselineImputer, gene_means, impute_baseline
from dropimpute.imputation.ensemble import compose_ensemble
from dropimpute.imputation.network import (
    NetworkImputer,
    NetworkModel,
    coerce_models,
    impute_network,
    models_from_coefficients,
)
from dropimpute.imputation.runner import MethodRunResult, coerce_output, run_method, run_methods

__all__ = [
    'BASELINE',
    'NETWORK',
    'ENSEMBLE',
    'ImputationContext',
    'ImputationMethod',
    'FunctionMethod',
    'MethodRegistry',
    'default_registry',
    'shared_registry',
    'register_method',
    'normalize_method_name',
    'BaselineImputer',
    'gene_means',
    'impute_baseline',
    'NetworkImputer',
    'NetworkModel',
    'coerce_models',
    'impute_network',
    'models_from_coefficients',
    'MethodRunResult',
    'coerce_output',
    'run_method',
    'run_methods',
    'compose_ensemble',
]
