"""
Read-only vignette content store backed by JSON files.

Each *.json file in the content directory holds one vignette object or a
list of them, in the camelCase content format. An empty library is seeded
with the bundled sample vignettes.
"""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from .errors import InvalidVignetteError, NotFoundError
from .models import Vignette

SAMPLE_VIGNETTES_PATH = Path(__file__).parent / "data" / "sample_vignettes.json"


def load_vignette_file(path: Path) -> list[Vignette]:
    """
    Parse a vignette JSON file.

    Raises:
        InvalidVignetteError: The file is not valid JSON or not valid vignette content
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidVignetteError(path.stem, [f"{path.name}: {e}"]) from e

    items = data if isinstance(data, list) else [data]
    vignettes = []
    for index, item in enumerate(items):
        try:
            vignettes.append(Vignette.model_validate(item))
        except ValidationError as e:
            vignette_id = item.get("id", f"{path.stem}[{index}]") if isinstance(item, dict) else path.stem
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise InvalidVignetteError(vignette_id, problems) from e
    return vignettes


def sample_vignettes() -> list[Vignette]:
    return load_vignette_file(SAMPLE_VIGNETTES_PATH)


class JsonContentStore:
    """
    Serves immutable vignettes by id.

    Files that fail to parse are logged and skipped so one bad file does not
    hide the rest of the library.
    """

    def __init__(self, content_dir: Path | None = None, seed_samples: bool = True):
        self.content_dir = content_dir
        self.seed_samples = seed_samples
        self._vignettes: dict[str, Vignette] | None = None

    def _load(self) -> dict[str, Vignette]:
        vignettes: dict[str, Vignette] = {}

        if self.content_dir is not None and self.content_dir.is_dir():
            for path in sorted(self.content_dir.glob("*.json")):
                try:
                    loaded = load_vignette_file(path)
                except InvalidVignetteError as e:
                    logger.error(f"Skipping {path.name}: {e}")
                    continue
                for vignette in loaded:
                    if vignette.id in vignettes:
                        logger.warning(f"Duplicate vignette id {vignette.id} in {path.name}; keeping first")
                        continue
                    vignettes[vignette.id] = vignette

        if not vignettes and self.seed_samples:
            logger.info("No vignettes found; using bundled samples")
            vignettes = {v.id: v for v in sample_vignettes()}

        logger.debug(f"Content store loaded {len(vignettes)} vignettes")
        return vignettes

    @property
    def vignettes(self) -> dict[str, Vignette]:
        if self._vignettes is None:
            self._vignettes = self._load()
        return self._vignettes

    def refresh(self) -> None:
        self._vignettes = None

    def list_vignettes(self) -> list[Vignette]:
        return list(self.vignettes.values())

    def get(self, vignette_id: str) -> Vignette:
        try:
            return self.vignettes[vignette_id]
        except KeyError:
            raise NotFoundError(vignette_id) from None

    async def get_vignette(self, vignette_id: str) -> Vignette:
        return self.get(vignette_id)
