"""Array and signal-processing library selection.

`xp` is the array module (cupy or numpy) and `signal` the matching
`scipy.signal` implementation (`cupyx.scipy.signal` or `scipy.signal`).
The choice is made once at import time and can be forced through the
`SCIEXT_BACKEND` environment variable (`auto`, `numpy` or `cupy`).
"""

from __future__ import annotations

import logging
import os
from typing import Literal

logger = logging.getLogger(__name__)


BackendName = Literal["numpy", "cupy"]

_BACKEND_ENV_VAR = "SCIEXT_BACKEND"
_VALID_BACKEND_REQUESTS = ("auto", "numpy", "cupy")


def _requested_backend() -> str:
    """Read the requested backend from the environment.

    Raises:
        ValueError: If the variable holds an unknown backend name.

    Returns:
        str: One of "auto", "numpy" or "cupy".
    """
    requested = os.environ.get(_BACKEND_ENV_VAR, "auto").strip().lower() or "auto"
    if requested not in _VALID_BACKEND_REQUESTS:
        raise ValueError(
            f'Invalid value "{requested}" for {_BACKEND_ENV_VAR}, '
            f"expected one of {_VALID_BACKEND_REQUESTS}."
        )
    return requested


def _validate_cupy_available(cupy_module: object) -> None:
    """Validate that CuPy has at least one working CUDA device.

    Raises:
        RuntimeError: If CUDA is unavailable or no devices are found.
    """
    try:
        _device_count = cupy_module.cuda.runtime.getDeviceCount()  # type: ignore[attr-defined]
    except Exception as exc:
        raise RuntimeError("Cupy is installed but CUDA is unavailable") from exc

    if _device_count < 1:
        raise RuntimeError("Cupy is installed but no CUDA devices are available")


_REQUESTED = _requested_backend()

BACKEND: BackendName

if _REQUESTED == "numpy":
    import numpy as xp
    import scipy.signal as signal

    BACKEND = "numpy"
    logger.debug(f"Using numpy as backend ({_BACKEND_ENV_VAR}=numpy)")
else:
    try:
        import cupy as xp
        import cupyx.scipy.signal as signal

        _validate_cupy_available(xp)

        BACKEND = "cupy"
        logger.debug("Using cupy as backend")
    except (ImportError, RuntimeError) as err:
        if _REQUESTED == "cupy":
            raise RuntimeError(
                f"{_BACKEND_ENV_VAR}=cupy was requested, but cupy is unusable: {err!r}"
            ) from err

        import numpy as xp
        import scipy.signal as signal

        BACKEND = "numpy"
        logger.warning("Cupy backend unavailable; falling back to numpy/scipy (cpu)")
        logger.debug(f"Falling back to numpy because: {err!r}")


__all__ = [
    "BACKEND",
    "BackendName",
    "signal",
    "xp",
]
