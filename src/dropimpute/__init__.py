"""
dropimpute: dropout imputation for single-cell RNA-seq expression matrices.

Several imputation methods are scored gene by gene on artificially hidden
entries, the best method is chosen per gene, and the chosen rows are combined
into one ensemble imputation. Imputed entries whose original zero looks
biological rather than technical can be rolled back to zero.

Modules:
    core: ExpressionMatrix, QualityFlag, Transform
    quality: input validation, dropout probability model, biological zeros
    evaluation: masking, per-gene MSE, per-gene method selection
    imputation: method registry, Baseline, Network, runner, ensemble
    stats: RPM / TPM normalization
    pipeline: evaluate_methods(), impute()

Examples:
    >>> import dropimpute as di
    >>>
    >>> counts = di.validate_matrix(counts_df)
    >>> normalized = di.normalize_rpm(counts).matrix
    >>> result = di.impute(normalized, methods="ensemble", true_zero_threshold=0.2)
    >>> result.final.to_frame()
"""

__version__ = "0.1.0"

from dropimpute.config import (
    DropoutConfig,
    EvaluationConfig,
    ExecutionConfig,
    NormalizationConfig,
    PipelineConfig,
    config_from_dict,
    load_config,
)
from dropimpute.core import ExpressionMatrix, QualityFlag, Transform
from dropimpute.evaluation import (
    MethodSelector,
    compute_mse_genewise,
    mask_matrix,
    score_methods,
    select_methods,
)
from dropimpute.exceptions import (
    DropImputeError,
    InvalidInputError,
    MethodExecutionError,
    MissingMethodResultError,
    ShapeMismatchError,
)
from dropimpute.imputation import (
    ImputationContext,
    ImputationMethod,
    MethodRegistry,
    compose_ensemble,
    default_registry,
    register_method,
    run_methods,
)
from dropimpute.pipeline import EvaluationResult, ImputationResult, evaluate_methods, impute
from dropimpute.quality import (
    DropoutClassifier,
    MatrixValidator,
    estimate_dropout_probabilities,
    set_biological_zeros,
    validate_matrix,
)
from dropimpute.stats import normalize_rpm, normalize_tpm

__all__ = [
    '__version__',
    # Pipeline
    'evaluate_methods',
    'impute',
    'EvaluationResult',
    'ImputationResult',
    # Components
    'validate_matrix',
    'MatrixValidator',
    'mask_matrix',
    'compute_mse_genewise',
    'score_methods',
    'select_methods',
    'MethodSelector',
    'compose_ensemble',
    'run_methods',
    'set_biological_zeros',
    'estimate_dropout_probabilities',
    'DropoutClassifier',
    'normalize_rpm',
    'normalize_tpm',
    # Methods
    'ImputationContext',
    'ImputationMethod',
    'MethodRegistry',
    'default_registry',
    'register_method',
    # Data
    'ExpressionMatrix',
    'QualityFlag',
    'Transform',
    # Config
    'PipelineConfig',
    'NormalizationConfig',
    'EvaluationConfig',
    'ExecutionConfig',
    'DropoutConfig',
    'load_config',
    'config_from_dict',
    # Errors
    'DropImputeError',
    'InvalidInputError',
    'ShapeMismatchError',
    'MissingMethodResultError',
    'MethodExecutionError',
]
