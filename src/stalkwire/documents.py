"""Decoders for the small subset of YAML that beanstalkd replies with."""
from typing import Dict, Iterable, List

Stats = Dict[str, str]

LIST_ITEM = "- "


def decode_list(lines: Iterable[str]) -> List[str]:
    """Decodes ``- item`` lines into a list of items. Other lines, such as the
    ``---`` head, are skipped.
    """
    values: List[str] = []
    for line in lines:
        if not line.startswith(LIST_ITEM):
            continue
        values.append(line[len(LIST_ITEM):])

    return values


def decode_map(lines: Iterable[str]) -> Stats:
    """Decodes ``key: value`` lines into a dict that keeps the line order.
    Lines of any other shape are skipped.
    """
    stats: Stats = {}
    for line in lines:
        key, sep, value = line.partition(": ")
        if not sep:
            continue
        stats[key] = value

    return stats
