from __future__ import annotations

import zlib
from typing import Optional

import numpy as np

DEFAULT_SEED = 0


def stage_rng(seed: Optional[int], stage: str) -> np.random.Generator:
    """
    Return a random generator dedicated to one pipeline stage.

    The stream depends only on ``seed`` and the stage name, so a stage draws
    the same numbers no matter which other stages ran before it. Global
    ``numpy.random`` state is never touched.
    """
    seed_value = DEFAULT_SEED if seed is None else int(seed)
    stage_key = zlib.crc32(str(stage).encode("utf-8"))
    return np.random.default_rng(np.random.SeedSequence([seed_value, stage_key]))
