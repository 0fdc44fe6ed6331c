"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESOLUTION_ERROR = 3


class LoaderType(Enum):
    """Loader backends supported by the program.

    Args:
        Enum (string): Loader backends supported by the program.
    """

    NATIVE = "native"
    PORTABLE = "portable"


class NodeModulesDirMode(Enum):
    """Values accepted for the ``nodeModulesDir`` workspace setting."""

    NONE = "none"
    AUTO = "auto"
    MANUAL = "manual"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    JSR_URL = "https://jsr.io"
    REGISTRY_URL_NPM = "https://registry.npmjs.org"
    SUPPORTED_LOADERS = [
        LoaderType.NATIVE.value,
        LoaderType.PORTABLE.value,
    ]
    CONFIG_FILE_NAMES = ["deno.json", "deno.jsonc"]
    LOCK_FILE_NAME = "deno.lock"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    MAX_REDIRECTS = 10
    USER_AGENT = "denoloader/0.1"

    # Cache layout below DENO_DIR
    LINK_DIR_NAME = "deno_esbuild"
    LINK_TMP_DIR_NAME = "deno_esbuild_tmp"
    NPM_CACHE_DIR_NAME = "npm"
    DENO_CACHE_METADATA = b"\n// denoCacheMetadata="

    ENV_JSR_URL = "JSR_URL"
    ENV_DENO_DIR = "DENO_DIR"
    ENV_LOG_LEVEL = "DENOLOADER_LOG_LEVEL"
    DENO_EXECUTABLE = "deno"
