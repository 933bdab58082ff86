class BTRFError(Exception):
    """Base class for backtracking regression tree errors."""


class InvalidInputError(BTRFError, ValueError):
    pass


class OutOfBoundsError(BTRFError, IndexError):
    pass


class DimensionMismatchError(BTRFError, ValueError):
    pass


class NotBuiltError(BTRFError, RuntimeError):
    pass
