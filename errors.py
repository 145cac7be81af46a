"""
Exception hierarchy for the screening pipeline.

Fatal errors (bad input, wrong number of criteria) abort the run. The
per-document ones never leave their stage -- the stage catches them and
substitutes a fallback record instead.
"""


class ScreeningError(Exception):
    """Base class for everything the pipeline raises on purpose."""


class InputValidationError(ScreeningError):
    """Wrong paper count or a paper missing its title/abstract."""


class CriteriaShapeError(ScreeningError):
    """Criteria generation didn't give back exactly 6 usable criteria."""


class PerDocumentSchemaError(ScreeningError):
    """One paper's extraction or evaluation response couldn't be parsed."""


class GatewayTransportError(ScreeningError):
    """The text-generation service was unreachable after all retries."""
