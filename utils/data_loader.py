import json
from pathlib import Path
from typing import Iterable, List, Union

from models import Zone


def load_zones(path: Union[str, Path]) -> List[Zone]:
    with open(path) as f:
        data = json.load(f)
    return [Zone(**zone) for zone in data["zones"]]


def save_zones(zones: Iterable[Zone], path: Union[str, Path]) -> None:
    payload = {"zones": [zone.model_dump(mode="json") for zone in zones]}
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)
