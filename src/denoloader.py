"""denoloader command line interface.

Runs the resolver and loader plugins against a minimal in-process build
context so a specifier can be resolved, loaded or linked from the shell.
"""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from args import parse_args
from cli_config import options_from_args
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes
from loader.errors import FetchError, LoaderError
from loader.models import LoaderOptions
from loader.npm import NodeModulesMaterializer
from loader.npm_info import NpmPackageRegistry, root_info, root_info_from_options
from loader.plugin import (
    BuildOptions,
    DenoLoaderPlugin,
    DenoResolverPlugin,
    OnLoadArgs,
    OnResolveResult,
    ResolveArgs,
    ResolveOptions,
)

logger = logging.getLogger(__name__)


class CliBuild:
    """Build context that runs the plugins in order, like a bundler would.

    Requests that carry a ``resolve_dir`` are resolved natively, by searching
    ``node_modules`` directories upwards from it.
    """

    def __init__(self, options: LoaderOptions, entry_points: List[str]):
        self.initial_options = BuildOptions(
            abs_working_dir=options.cwd,
            entry_points=entry_points,
            external=list(options.external),
        )
        self.resolver = DenoResolverPlugin(options)
        self.loader = DenoLoaderPlugin(options)
        self.resolver.setup(self)
        self.loader.setup(self)

    async def start(self) -> None:
        await self.resolver.on_start()
        await self.loader.on_start()

    async def close(self) -> None:
        self.resolver.close()
        await self.loader.close()

    async def resolve(self, path: str, options: ResolveOptions) -> Optional[OnResolveResult]:
        if options.resolve_dir:
            return _resolve_in_node_modules(path, options.resolve_dir)
        args = ResolveArgs(
            path=path,
            importer=options.importer or "",
            namespace=options.namespace if options.namespace is not None else "file",
            kind=options.kind,
        )
        for plugin in (self.resolver, self.loader):
            result = await plugin.on_resolve(args)
            if result is not None:
                return result
        return None


def _resolve_in_node_modules(path: str, resolve_dir: str) -> Optional[OnResolveResult]:
    current = resolve_dir
    while True:
        candidate = os.path.join(current, "node_modules", *path.split("/"))
        if os.path.exists(candidate):
            return OnResolveResult(path=candidate, namespace="file")
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def _result_json(result: Optional[OnResolveResult]) -> Dict[str, Any]:
    if result is None:
        return {"resolved": False}
    return {
        "resolved": True,
        "path": result.path,
        "namespace": result.namespace,
        "external": result.external,
    }


async def _run_resolve(options: LoaderOptions, args) -> Dict[str, Any]:
    build = CliBuild(options, [args.SPECIFIER])
    try:
        await build.start()
        result = await build.resolver.on_resolve(
            ResolveArgs(path=args.SPECIFIER, resolve_dir=options.cwd, kind="entry-point")
        )
        return _result_json(result)
    finally:
        await build.close()


async def _run_load(options: LoaderOptions, args) -> Dict[str, Any]:
    build = CliBuild(options, [args.SPECIFIER])
    try:
        await build.start()
        result = await build.resolver.on_resolve(
            ResolveArgs(path=args.SPECIFIER, resolve_dir=options.cwd, kind="entry-point")
        )
        output = _result_json(result)
        if result is None or result.external:
            return output
        loaded = await build.loader.on_load(OnLoadArgs(path=result.path, namespace=result.namespace or "file"))
        if loaded is None:
            output["loader"] = None
            return output
        output["loader"] = loaded.loader
        output["size"] = len(loaded.contents)
        output["watch_files"] = loaded.watch_files
        if args.OUTPUT:
            with open(args.OUTPUT, "wb") as f:
                f.write(loaded.contents)
            output["output"] = args.OUTPUT
        else:
            output["contents"] = loaded.contents.decode("utf-8", errors="replace")
        return output
    finally:
        await build.close()


async def _run_link(options: LoaderOptions, args) -> Dict[str, Any]:
    packages = NpmPackageRegistry.from_file(args.INFO_FILE)
    known_root = None
    if options.deno_dir or options.npm_cache_dir:
        known_root = root_info_from_options(options.deno_dir, options.npm_cache_dir)

    async def _discover_root():
        return await root_info(options.deno_executable)

    materializer = NodeModulesMaterializer(
        packages,
        root_info=known_root,
        root_info_loader=_discover_root,
        default_registry_url=options.npm_registry_url,
    )
    path = await materializer.node_modules_dir_for_package(args.PACKAGE_ID)
    return {"package_id": args.PACKAGE_ID, "path": path}


COMMANDS = {
    "resolve": _run_resolve,
    "load": _run_load,
    "link": _run_link,
}


def _setup_logging(args) -> None:
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    _setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action=args.COMMAND)
        )

    try:
        options = options_from_args(args)
        output = asyncio.run(COMMANDS[args.COMMAND](options, args))
    except FetchError as exc:
        logger.error("%s", exc)
        sys.exit(ExitCodes.CONNECTION_ERROR.value)
    except LoaderError as exc:
        logger.error("%s", exc)
        sys.exit(ExitCodes.RESOLUTION_ERROR.value)
    except (OSError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(ExitCodes.FILE_ERROR.value)

    print(json.dumps(output, indent=2))
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
