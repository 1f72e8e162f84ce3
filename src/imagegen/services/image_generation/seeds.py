"""Seed generation for image batches."""

import random

MAX_SEED = 2**31 - 1


def generate_unique_seeds(count: int, max_seed: int = MAX_SEED) -> list[int]:
    """Return ``count`` pairwise distinct seeds in ``[0, max_seed)``.

    Raises:
        ValueError: If count is negative or exceeds the seed space
    """
    if count < 0:
        raise ValueError(f"count must be non-negative (got {count})")
    return random.sample(range(max_seed), count)
