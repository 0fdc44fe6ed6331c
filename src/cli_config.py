"""Settings file loading and CLI option merging for denoloader.

Precedence (lowest to highest): settings file, environment (``JSR_URL``,
``DENO_DIR``), CLI flags.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from typing import Any, Dict, Optional

import yaml

from constants import Constants
from loader.models import LoaderOptions

logger = logging.getLogger(__name__)

_OPTION_FIELDS = {f.name for f in dataclasses.fields(LoaderOptions)}

# CLI dest -> LoaderOptions field
_ARG_FIELDS = {
    "LOADER": "loader",
    "CWD": "cwd",
    "CONFIG_PATH": "config_path",
    "IMPORT_MAP": "import_map_url",
    "LOCK_PATH": "lock_path",
    "NODE_MODULES_DIR": "node_modules_dir",
    "EXTERNAL": "external",
    "JSR_URL": "jsr_url",
    "NPM_REGISTRY_URL": "npm_registry_url",
    "DENO_DIR": "deno_dir",
    "NPM_CACHE_DIR": "npm_cache_dir",
    "DENO_EXECUTABLE": "deno_executable",
    "TIMEOUT": "request_timeout",
}


def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Load loader settings from a YAML or JSON file.

    The settings may sit at the top level or under a ``denoloader`` key.
    Unknown keys are logged and ignored.

    Args:
        path: Path to a ``.yml``/``.yaml``/``.json`` file.

    Returns:
        Dict of LoaderOptions field values (empty when no path is given).

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file does not parse to a mapping.
    """
    if not path:
        return {}

    with open(path, "r", encoding="utf-8") as f:
        if path.lower().endswith(".json"):
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    section = data.get("denoloader", data)
    if not isinstance(section, dict):
        raise ValueError(f"Settings file {path}: 'denoloader' must be a mapping")

    values: Dict[str, Any] = {}
    for key, value in section.items():
        name = str(key).replace("-", "_")
        if name not in _OPTION_FIELDS:
            logger.warning("Ignoring unknown setting '%s' in %s", key, path)
            continue
        values[name] = value
    if "external" in values and isinstance(values["external"], str):
        values["external"] = [values["external"]]
    logger.debug("Loaded %d settings from %s", len(values), path)
    return values


def options_from_args(args: Any) -> LoaderOptions:
    """Build LoaderOptions from parsed CLI arguments.

    Args:
        args: argparse namespace produced by ``args.parse_args``.

    Returns:
        LoaderOptions with settings file, environment and flags merged.
    """
    values = load_config_file(getattr(args, "SETTINGS", None))

    if os.environ.get(Constants.ENV_JSR_URL):
        values["jsr_url"] = os.environ[Constants.ENV_JSR_URL]
    if os.environ.get(Constants.ENV_DENO_DIR):
        values["deno_dir"] = os.environ[Constants.ENV_DENO_DIR]

    for cli_dest, field_name in _ARG_FIELDS.items():
        value = getattr(args, cli_dest, None)
        if value is None or value == []:
            continue
        values[field_name] = value

    if values.get("cwd"):
        values["cwd"] = os.path.abspath(values["cwd"])

    return LoaderOptions(**values)
