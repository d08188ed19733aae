from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union

PathLike = Union[str, Path]


def _parse_names_mapping(lines: List[str]) -> Dict[int, str]:
    names: Dict[int, str] = {}
    in_names = False
    for line in lines:
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue

        # Parse "id: label"
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right
    return names


def load_class_names(path: PathLike) -> List[str]:
    """
    Load the class-label table, indexed by class id.

    Two formats are understood. A YAML-style mapping:

        names:
          0: person
          1: bicycle
          ...

    or plain text with one label per line (line order = class id). Gaps in a
    mapping are filled with ``class_<id>``. No YAML dependency is needed.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Class label file not found: {p}")

    lines: List[str] = []
    with open(p, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            lines.append(line)

    if "names:" not in lines:
        return lines

    mapping = _parse_names_mapping(lines)
    if not mapping:
        return []
    return [mapping.get(i, f"class_{i}") for i in range(max(mapping) + 1)]
