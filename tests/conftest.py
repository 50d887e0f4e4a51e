import json
from pathlib import Path
from typing import Dict

import pytest

from census_data import aerial_table, calendar_table, camera_table, hex_grid_geojson, traits_table


@pytest.fixture
def census_files(tmp_path: Path) -> Dict[str, Path]:
    paths = {
        "aerial": tmp_path / "aerial.csv",
        "grid": tmp_path / "hexes.geojson",
        "camera": tmp_path / "camera.csv",
        "calendar": tmp_path / "calendar.csv",
        "traits": tmp_path / "traits.csv",
    }
    aerial_table().to_csv(paths["aerial"], index=False)
    paths["grid"].write_text(json.dumps(hex_grid_geojson()))
    camera_table().to_csv(paths["camera"], index=False)
    calendar_table().to_csv(paths["calendar"], index=False)
    traits_table().to_csv(paths["traits"], index=False)
    return paths
