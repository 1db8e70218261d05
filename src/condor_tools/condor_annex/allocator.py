from typing import List


def allocate(total: int, pool_count: int) -> List[int]:
    """
    Distribute ``total`` instances over ``pool_count`` pools as evenly as
    possible.  The first ``total % pool_count`` pools get one more than the
    others, so the result is non-increasing and always sums to ``total``.

    >>> allocate(10, 3)
    [4, 3, 3]
    >>> allocate(2, 5)
    [1, 1, 0, 0, 0]
    """
    if pool_count < 1:
        raise ValueError(f"Can't allocate across {pool_count} pools.")
    if total < 0:
        raise ValueError(f"Can't allocate {total} instances.")

    base, remainder = divmod(total, pool_count)
    return [base + 1 if i < remainder else base for i in range(pool_count)]
