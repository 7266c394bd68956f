# auditory_bistability/pipeline/methods.py
"""Component extraction methods for temporal coherence analysis.

A method is looked up by name (``make_method("nmf", maxiter=300)``) and
exposes two things to the coherence engine:

* ``eltype(x)`` - element type of the coherence output for input ``x``
* ``session(K)`` - a context manager yielding ``extract(window)`` which turns
  one ``(time, rate, scale, freq)`` window into a
  ``(*component_axes, K)`` array.

Anything a method carries from one window to the next (e.g. warm-started
factorization bases) lives inside the session, so two ``cohere`` calls never
share state.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Tuple, Type

import numpy as np

from .determinism import stage_rng
from .errors import ConfigurationError, ExtractionError

logger = logging.getLogger(__name__)

Extractor = Callable[[np.ndarray], np.ndarray]

METHODS: Dict[str, Type["CoherenceMethod"]] = {}


def register_method(name: str):
    """Class decorator adding a method to the registry under ``name``."""
    def _register(cls):
        cls.name = name
        METHODS[name] = cls
        return cls
    return _register


def make_method(name: str, **kwds) -> "CoherenceMethod":
    key = str(name).lower()
    if key not in METHODS:
        raise ConfigurationError(
            f"Unknown coherence method '{name}'. Available: {sorted(METHODS)}"
        )
    try:
        return METHODS[key](**kwds)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid parameters for coherence method '{name}': {exc}") from exc


class CoherenceMethod:
    name = "base"
    # axes of the input window kept in every component; the rest are reduced
    component_axes: Tuple[str, ...] = ("scale", "freq")

    def eltype(self, x) -> np.dtype:
        dtype = x.dtype if hasattr(x, "dtype") else np.asarray(x).dtype
        real = np.empty(0, dtype=dtype).real.dtype
        if np.issubdtype(real, np.floating):
            return real
        return np.dtype(np.float64)

    def component_shape(self, window_shape: Tuple[int, ...]) -> Tuple[int, ...]:
        # window layout is (time, rate, scale, freq)
        return tuple(window_shape[2:])

    @contextmanager
    def session(self, ncomponents: int) -> Iterator[Extractor]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


@register_method("mean")
class MeanMethod(CoherenceMethod):
    """Window mean over time and rate, repeated for every component."""

    @contextmanager
    def session(self, ncomponents: int) -> Iterator[Extractor]:
        K = int(ncomponents)

        def extract(window: np.ndarray) -> np.ndarray:
            m = np.mean(window, axis=(0, 1))
            if np.iscomplexobj(m):
                m = np.abs(m)
            return np.repeat(m[..., np.newaxis], K, axis=-1)

        yield extract


@register_method("nmf")
class NMFMethod(CoherenceMethod):
    """
    Non-negative matrix factorization of each window.

    The window magnitude is laid out as a ``(time*rate, scale*freq)`` matrix
    ``V ~= W @ H`` and factorized with multiplicative updates on the
    Frobenius objective. The K rows of ``H`` are the components. ``H`` from
    the previous window seeds the next one, which keeps component identity
    stable across neighbouring windows.
    """

    def __init__(
        self,
        maxiter: int = 200,
        tol: float = 1e-4,
        max_retries: int = 2,
        seed: Optional[int] = 0,
        eps: float = 1e-12,
        warm_start: bool = True,
    ):
        if int(maxiter) < 1:
            raise ConfigurationError(f"nmf maxiter must be >= 1, got {maxiter}")
        self.maxiter = int(maxiter)
        self.tol = float(tol)
        self.max_retries = int(max(0, max_retries))
        self.seed = seed
        self.eps = float(eps)
        self.warm_start = bool(warm_start)

    def __repr__(self) -> str:
        return f"NMFMethod(maxiter={self.maxiter}, tol={self.tol}, seed={self.seed})"

    @contextmanager
    def session(self, ncomponents: int) -> Iterator[Extractor]:
        K = int(ncomponents)
        rng = stage_rng(self.seed, "nmf")
        state: Dict[str, Optional[np.ndarray]] = {"H": None}

        def extract(window: np.ndarray) -> np.ndarray:
            out_shape = self.component_shape(window.shape)
            V = np.abs(np.asarray(window)).reshape(window.shape[0] * window.shape[1], -1)
            V = V.astype(np.float64, copy=False)

            if not np.any(V > 0):
                return np.zeros(out_shape + (K,), dtype=np.float64)

            H0 = state["H"] if self.warm_start else None
            for attempt in range(self.max_retries + 1):
                W, H = self._factorize(V, K, rng, H0)
                if np.all(np.isfinite(H)) and np.all(np.isfinite(W)):
                    break
                logger.warning("NMF produced non-finite factors (attempt %d); restarting", attempt + 1)
                H0 = None
            else:
                raise ExtractionError(
                    f"NMF failed to produce finite factors after {self.max_retries + 1} attempts"
                )

            state["H"] = H
            return H.T.reshape(out_shape + (K,))

        yield extract

    def _init_factor(self, rng: np.random.Generator, shape: Tuple[int, int], mean_v: float, K: int) -> np.ndarray:
        scale = np.sqrt(mean_v / K)
        return np.abs(rng.standard_normal(shape)) * scale + self.eps

    def _factorize(
        self,
        V: np.ndarray,
        K: int,
        rng: np.random.Generator,
        H0: Optional[np.ndarray],
    ) -> Tuple[np.ndarray, np.ndarray]:
        n, m = V.shape
        mean_v = float(V.mean())
        W = self._init_factor(rng, (n, K), mean_v, K)
        if H0 is not None and H0.shape == (K, m) and np.all(H0.sum(axis=1) > self.eps):
            H = H0.copy()
        else:
            H = self._init_factor(rng, (K, m), mean_v, K)

        eps = self.eps
        norm_v = float(np.linalg.norm(V)) + eps
        prev_err = np.inf
        for it in range(self.maxiter):
            H *= (W.T @ V) / (W.T @ W @ H + eps)
            W *= (V @ H.T) / (W @ (H @ H.T) + eps)
            if it % 10 == 9 or it == self.maxiter - 1:
                err = float(np.linalg.norm(V - W @ H)) / norm_v
                if abs(prev_err - err) < self.tol:
                    break
                prev_err = err

        # unit-norm activations; H carries the component magnitude
        col = np.linalg.norm(W, axis=0)
        col = np.where(col > eps, col, 1.0)
        W = W / col
        H = H * col[:, np.newaxis]
        return W, H
