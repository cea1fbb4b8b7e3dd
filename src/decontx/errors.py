"""Exceptions raised by DecontX."""


class DecontXError(ValueError):
    """Base class for DecontX input and parameter errors."""


class InvalidInput(DecontXError):
    """The count matrix cannot be decontaminated (missing values, wrong shape)."""


class InvalidParameter(DecontXError):
    """A hyperparameter or label vector is out of range."""
