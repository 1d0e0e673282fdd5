from typing import Dict, Iterable, List, Mapping, Union

from .source import RawEvent


def order_events(streams: Union[Mapping[str, Iterable[RawEvent]], Iterable[Iterable[RawEvent]]]) -> List[RawEvent]:
    """Merge per-kind event lists into one sequence ordered by (block, log index).

    The same log delivered twice (same transaction hash and log index) is kept
    once. Identity is the sort key's tie-breaker, so the output does not depend
    on the order of the input lists or of the events within them.
    """
    if isinstance(streams, Mapping):
        streams = streams.values()

    unique: Dict[tuple, RawEvent] = {}
    for stream in streams:
        for event in stream:
            unique.setdefault(event.identity, event)

    return sorted(unique.values(), key=lambda e: (e.block_number, e.log_index, e.transaction_hash, e.kind))
