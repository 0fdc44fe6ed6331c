"""Argument parsing functionality for denoloader."""

import argparse
from constants import Constants


def _add_common_options(parser):
    parser.add_argument("--loader",
                        dest="LOADER",
                        help="Loader backend (native shells out to deno, portable fetches itself)",
                        action="store", type=str,
                        choices=Constants.SUPPORTED_LOADERS)
    parser.add_argument("--cwd",
                        dest="CWD",
                        help="Working directory for workspace discovery and node_modules",
                        action="store", type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG_PATH",
                        help="Path to deno.json / deno.jsonc (disables workspace discovery)",
                        action="store", type=str)
    parser.add_argument("--settings",
                        dest="SETTINGS",
                        help="Path to a denoloader settings file (YAML, YML, or JSON)",
                        action="store", type=str)
    parser.add_argument("--lock",
                        dest="LOCK_PATH",
                        help="Path to deno.lock",
                        action="store", type=str)
    parser.add_argument("--import-map",
                        dest="IMPORT_MAP",
                        help="Import map path or URL",
                        action="store", type=str)
    parser.add_argument("--node-modules-dir",
                        dest="NODE_MODULES_DIR",
                        help="node_modules mode",
                        action="store", type=str,
                        choices=["none", "auto", "manual"])
    parser.add_argument("--deno-dir",
                        dest="DENO_DIR",
                        help="Deno cache directory (overrides DENO_DIR)",
                        action="store", type=str)
    parser.add_argument("--npm-cache-dir",
                        dest="NPM_CACHE_DIR",
                        help="Deno npm cache directory (default: DENO_DIR/npm)",
                        action="store", type=str)
    parser.add_argument("--deno",
                        dest="DENO_EXECUTABLE",
                        help="Deno executable used by the native loader",
                        action="store", type=str)
    parser.add_argument("--jsr-url",
                        dest="JSR_URL",
                        help="JSR registry base URL (overrides JSR_URL)",
                        action="store", type=str)
    parser.add_argument("--npm-registry-url",
                        dest="NPM_REGISTRY_URL",
                        help="Default npm registry URL",
                        action="store", type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="Request timeout in seconds",
                        action="store", type=int)
    parser.add_argument("-e", "--external",
                        dest="EXTERNAL",
                        help="URL pattern (with * wildcards) never to load; can be used multiple times",
                        action="append", type=str,
                        default=[])
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='WARNING')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)


def build_parser():
    """Build the argument parser with the resolve, load and link sub-commands."""
    parser = argparse.ArgumentParser(
        prog="denoloader",
        description=(
            "denoloader - Deno-style module resolution and loading for bundlers"
        ),
        add_help=True,
    )
    subparsers = parser.add_subparsers(dest="COMMAND", required=True)

    resolve = subparsers.add_parser("resolve", help="Resolve a specifier and print where it goes")
    resolve.add_argument("SPECIFIER", help="Specifier to resolve (relative to --cwd)")
    _add_common_options(resolve)

    load = subparsers.add_parser("load", help="Resolve and load a module")
    load.add_argument("SPECIFIER", help="Specifier to load (relative to --cwd)")
    load.add_argument("-o", "--output",
                      dest="OUTPUT",
                      help="Write module contents to this file instead of printing JSON",
                      action="store", type=str)
    _add_common_options(load)

    link = subparsers.add_parser("link", help="Materialize the node_modules tree of an npm package")
    link.add_argument("PACKAGE_ID", help="Package id, e.g. chalk@5.3.0")
    link.add_argument("--info",
                      dest="INFO_FILE",
                      help="File holding `deno info --json` output with an npmPackages table",
                      action="store", type=str,
                      required=True)
    _add_common_options(link)

    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
