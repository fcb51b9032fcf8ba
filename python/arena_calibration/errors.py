"""Error types and the cooperative cancellation token used by the stitch worker."""

import threading


class CalibrationError(Exception):
    """Base class for every recoverable calibration failure."""


class InputValidationError(CalibrationError):
    """Wrong image count, mismatched image sizes or too few corners."""


class ConnectivityError(CalibrationError):
    """Fewer than four images join one matched component."""


class AmbiguousCornersError(CalibrationError):
    """Two arena corners fall into the same quadrant of the panorama."""


class StitchCancelled(CalibrationError):
    """Raised inside the worker when its cancellation token is set."""


class CancellationToken:
    """Thread-safe flag checked by long-running stages at iteration boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self):
        """Raise StitchCancelled if cancellation has been requested."""
        if self._event.is_set():
            raise StitchCancelled("Stitching operation cancelled")


def check_cancel(token):
    """Check an optional token; a None token never cancels."""
    if token is not None:
        token.check()
