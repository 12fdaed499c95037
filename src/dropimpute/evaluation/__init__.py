"""
Hide-and-score evaluation of imputation methods.

Components:
    Masker / mask_matrix: hide a random fraction of non-zero entries
    compute_mse_genewise / score_methods: per-gene error at hidden entries
    MethodSelector / select_methods: per-gene best method

Examples:
    >>> from dropimpute.evaluation import mask_matrix, score_methods, select_methods
    >>>
    >>> rounds = mask_matrix(matrix, probability=0.1, seed=0)
    >>> errors = score_methods(rounds, imputations)
    >>> choice = select_methods(errors, priority=["baseline", "network"])
"""

from dropimpute.evaluation.masking import MaskResult, Masker, mask_matrix
from dropimpute.evaluation.scoring import GeneErrors, compute_mse_genewise, score_methods
from dropimpute.evaluation.selection import MethodSelector, select_methods, selection_summary

__all__ = [
    'MaskResult',
    'Masker',
    'mask_matrix',
    'GeneErrors',
    'compute_mse_genewise',
    'score_methods',
    'MethodSelector',
    'select_methods',
    'selection_summary',
]
