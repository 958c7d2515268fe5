r"""Shared constants for segmented MIL pooling.

Attributes:
    NEG_INF (float): Identity element of the running maximum. True ``-inf`` is
        used (not a large negative sentinel) so that any finite instance value
        registers as a strict increase in the first round.
"""

NEG_INF = float("-inf")
