"""Exception types raised at the edges of the weight producer."""


class ConfigurationError(ValueError):
    """Fatal configuration problem, raised once at startup."""


class LHEFormatError(ValueError):
    """An LHE event record is too broken to extract weights from."""
