import json
from pathlib import Path

from pydantic import ValidationError

from reconciler.errors import BadConfigException
from reconciler.models import Config


def load_conf(config_path: str) -> Config:
    """Loads a run config from a json file"""
    path = Path(config_path)
    if path.is_dir():
        path = path / "run-conf.json"
    try:
        return Config.model_validate_json(path.read_text())
    except ValidationError as e:
        raise BadConfigException(f"Invalid config at {path}:\n{e}") from e


def save_conf(config: Config, config_path: str) -> None:
    with open(config_path, "w+") as j:
        j.write(json.dumps(config.model_dump(mode="json"), indent=4))
