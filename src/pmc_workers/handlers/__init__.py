# Import all handlers so they register themselves.
from . import calibration  # noqa: F401
