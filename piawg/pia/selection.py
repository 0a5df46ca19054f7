#!/usr/bin/env python3

"""
PIA Endpoint Selection Module

Decides which WireGuard endpoints get provisioned:
- manual: operator picks indices from the displayed candidate list
- first-responsive: first reachable candidate in list order
- lowest-latency: smallest measured latency, earliest candidate wins ties
- all-responsive: every reachable candidate

Automatic modes are applied to one region's candidates at a time, and a
region without a usable candidate is reported with NoReachableCandidate so
the caller can skip it and carry on.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from ..logger import log_message
from .regions import Endpoint, ProbeResult


MANUAL = "manual"
FIRST_RESPONSIVE = "first-responsive"
LOWEST_LATENCY = "lowest-latency"
ALL_RESPONSIVE = "all-responsive"

SELECTION_MODES = (MANUAL, FIRST_RESPONSIVE, LOWEST_LATENCY, ALL_RESPONSIVE)
AUTOMATIC_MODES = (FIRST_RESPONSIVE, LOWEST_LATENCY, ALL_RESPONSIVE)


class SelectionError(Exception):
    """Exception for endpoint selection errors."""
    pass


class NoReachableCandidate(SelectionError):
    """No candidate qualified under the selected mode."""
    pass


class SelectionOutOfRange(SelectionError):
    """A manual selection index does not refer to a displayed candidate."""

    def __init__(self, index: int, count: int):
        super().__init__(f"Selection {index} is out of range (0-{count - 1})" if count
                         else f"Selection {index} is out of range (no candidates)")
        self.index = index
        self.count = count


def _index_results(results: Optional[Sequence[ProbeResult]]) -> Dict[Tuple[str, str], ProbeResult]:
    return {result.endpoint.key: result for result in results or []}


def select_first_responsive(candidates: Sequence[Endpoint], results: Sequence[ProbeResult]) -> Endpoint:
    """Return the first candidate, in list order, whose probe succeeded."""
    by_key = _index_results(results)
    for endpoint in candidates:
        result = by_key.get(endpoint.key)
        if result is not None and result.reachable:
            return endpoint
    raise NoReachableCandidate("No responsive server found")


def select_lowest_latency(candidates: Sequence[Endpoint], results: Sequence[ProbeResult]) -> Endpoint:
    """
    Return the reachable candidate with the strictly smallest latency.

    Candidates are compared on (latency, list position), which is a total
    order, so equal latencies always resolve to the earlier candidate.
    """
    by_key = _index_results(results)
    best: Optional[Tuple[int, int]] = None
    best_endpoint = None
    for position, endpoint in enumerate(candidates):
        result = by_key.get(endpoint.key)
        if result is None or not result.reachable or result.latency_ms is None:
            continue
        rank = (result.latency_ms, position)
        if best is None or rank < best:
            best = rank
            best_endpoint = endpoint
    if best_endpoint is None:
        raise NoReachableCandidate("No server reported a latency")
    return best_endpoint


def select_all_responsive(candidates: Sequence[Endpoint], results: Sequence[ProbeResult]) -> List[Endpoint]:
    """Return every reachable candidate in list order."""
    by_key = _index_results(results)
    chosen = [e for e in candidates if by_key.get(e.key) is not None and by_key[e.key].reachable]
    if not chosen:
        raise NoReachableCandidate("No responsive server found")
    return chosen


def select_manual(candidates: Sequence[Endpoint], indices: Sequence[int]) -> List[Endpoint]:
    """
    Return the candidates at the given display indices.

    Duplicate indices are collapsed; order follows the first occurrence.

    Raises:
        SelectionOutOfRange: If any index is outside the candidate list
    """
    if not indices:
        raise SelectionError("No selection given")
    chosen: List[Endpoint] = []
    for index in indices:
        if not isinstance(index, int) or index < 0 or index >= len(candidates):
            raise SelectionOutOfRange(index, len(candidates))
        endpoint = candidates[index]
        if endpoint not in chosen:
            chosen.append(endpoint)
    return chosen


def select_endpoints(candidates: Sequence[Endpoint], results: Optional[Sequence[ProbeResult]],
                     mode: str, selection_input: Optional[Sequence[int]] = None) -> List[Endpoint]:
    """
    Pick the endpoints to provision.

    Args:
        candidates: Candidate endpoints in display order
        results: Probe results for the candidates (required by automatic modes)
        mode: One of SELECTION_MODES
        selection_input: Display indices, manual mode only

    Returns:
        Chosen endpoints; at most one for first-responsive and lowest-latency

    Raises:
        SelectionOutOfRange: Manual index outside the candidate list
        NoReachableCandidate: No candidate qualifies in an automatic mode
        ValueError: Unknown mode
    """
    if mode == MANUAL:
        chosen = select_manual(candidates, list(selection_input or []))
    elif mode not in AUTOMATIC_MODES:
        raise ValueError(f"Invalid selection mode: {mode}. Must be one of {list(SELECTION_MODES)}")
    elif not candidates:
        raise NoReachableCandidate("No WireGuard servers available")
    elif mode == FIRST_RESPONSIVE:
        chosen = [select_first_responsive(candidates, results or [])]
    elif mode == LOWEST_LATENCY:
        chosen = [select_lowest_latency(candidates, results or [])]
    else:
        chosen = select_all_responsive(candidates, results or [])

    log_message(4, f"Selected ({mode}): {', '.join(str(e) for e in chosen)}")
    return chosen
