#!/usr/bin/env python3
"""rsync_deploy.py — publish a generated site to a remote host with rsync.

Features:
- Reads the ``deploy`` section of a site ``_config.yml``
- Fills in sensible defaults for every optional rsync switch
- Builds the ``-e`` remote shell from port / key / custom rsh settings
- Optional two-pass "create before update" publishing
- Colour-coded CLI output
"""

import argparse
import os
import platform
import re
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Callable, Mapping, NamedTuple, NoReturn, Optional

import yaml

# ──────────────────────────────────────────────────────────────────────────────
# ANSI colours
# ──────────────────────────────────────────────────────────────────────────────
GREEN = "\033[1;32m"  # bright/bold green
CYAN = "\033[1;36m"  # bright/bold cyan
RED = "\033[1;31m"  # bright/bold red
ORANGE = "\033[1;33m"  # bright/bold orange
RESET = "\033[0m"  # reset style/colour


def colorprint(color: str, msg: str, **kwargs) -> None:
    """Print a message in the specified ANSI color and reset the style afterwards.

    Args:
        color: ANSI color code.
        msg: The message to print.
        **kwargs: Extra keyword arguments passed to `print()`, such as `end` or `flush`.
    """
    print(f"{color}{msg}{RESET}", **kwargs)


def abort(msg: str, code: int = 1) -> NoReturn:
    """Print an error message in red and exit the script with the given code."""
    colorprint(RED, f"❌ {msg}")
    sys.exit(code)


# ──────────────────────────────────────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────────────────────────────────────

class DeployError(RuntimeError):
    """rsync could not be launched or exited with a non-zero status."""

    def __init__(self, msg: str, returncode: int = 1):
        super().__init__(msg)
        self.returncode = returncode


class ConfigError(RuntimeError):
    """The site configuration file is missing or malformed."""


# ──────────────────────────────────────────────────────────────────────────────
# Validation / defaults
# ──────────────────────────────────────────────────────────────────────────────

REQUIRED_KEYS = ("host", "user", "root")

DEFAULTS = {
    "delete": True,
    "verbose": True,
    "progress": True,
    "ignore_errors": False,
    "create_before_update": False,
    "dry_run": False,
}

HELP_TEXT = "\n".join([
    "You should configure deployment settings in _config.yml first!",
    "",
    "Example:",
    "  deploy:",
    "    type: rsync",
    "    host: <host>",
    "    user: <user>",
    "    root: <root>",
    "    port: [port] # Default is 22",
    "    delete: [true|false] # Default is true",
    "    progress: [true|false] # Default is true",
    "    args: <rsync args>",
    "    rsh: <remote shell>",
    "    key: <key>",
    "    verbose: [true|false] # Default is true",
    "    ignore_errors: [true|false] # Default is false",
    "    create_before_update: [true|false] # Default is false",
    "",
    "For more help, you can check the docs: https://hexo.io/docs/one-command-deployment",
])


def validate_config(config: Optional[Mapping]) -> bool:
    """Return True if *config* has every required key, otherwise print help."""
    if config and all(config.get(key) for key in REQUIRED_KEYS):
        return True
    print(HELP_TEXT)
    return False


def normalize_options(config: Mapping) -> dict:
    """Return a copy of *config* with defaults for unset optional flags.

    Defaults only fill keys that are missing; explicit ``False``, ``0`` or
    ``None`` (an empty YAML value) are kept. The input mapping is left untouched.
    """
    options = dict(config)
    for key, default in DEFAULTS.items():
        if key not in options:
            options[key] = default
    return options


# ──────────────────────────────────────────────────────────────────────────────
# Remote shell
# ──────────────────────────────────────────────────────────────────────────────

def valid_port(port) -> Optional[int]:
    """Return *port* as an int if it is a usable TCP port, else None."""
    if port is None or isinstance(port, bool):
        return None
    try:
        port = int(port)
    except (TypeError, ValueError):
        return None
    return port if 0 < port < 65536 else None


def single_quote(value: str) -> str:
    """Wrap *value* in single quotes, escaping embedded single quotes."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


class Transport(NamedTuple):
    """Remote shell handed to rsync through ``-e``.

    ``shell`` is None for plain ``ssh``. ``key`` is only honoured together
    with a port.
    """

    shell: Optional[str] = None
    key: Optional[str] = None
    port: Optional[int] = None

    def render(self) -> str:
        parts = [single_quote(self.shell) if self.shell else "ssh"]
        if self.port is not None:
            if self.key:
                parts += ["-i", shlex.quote(str(self.key))]
            parts += ["-p", str(self.port)]
        return " ".join(parts)


def resolve_transport(options: Mapping) -> Optional[Transport]:
    """Work out the remote shell for *options*, or None for rsync's default."""
    port = valid_port(options.get("port"))
    rsh = options.get("rsh")
    if port is None and not rsh:
        return None
    return Transport(shell=rsh or None, key=options.get("key") or None, port=port)


# ──────────────────────────────────────────────────────────────────────────────
# Command assembly
# ──────────────────────────────────────────────────────────────────────────────

def cygwin_path(path: str) -> str:
    """Convert a Windows path such as ``C:\\site\\public`` to ``/cygdrive/c/site/public``."""
    path = path.replace("\\", "/")
    match = re.match(r"^([A-Za-z]):(.*)$", path)
    if match:
        path = f"/cygdrive/{match.group(1).lower()}{match.group(2)}"
    return path


def local_path(public_dir: str) -> str:
    """Return *public_dir* in the form the local rsync binary expects."""
    if platform.system() == "Windows":
        return cygwin_path(public_dir)
    return public_dir


def destination(options: Mapping) -> str:
    return f"{options['user']}@{options['host']}:{options['root']}"


def build_rsync_args(public_dir: str, options: Mapping, ignore_existing: bool = False) -> list[str]:
    """Construct the rsync argument vector (without the program name).

    Args:
        public_dir: Local directory to publish.
        options: Normalized deploy options.
        ignore_existing: Add ``--ignore-existing`` for a create-only pass.

    Returns:
        The ordered argument list, ending with source and destination.
    """
    args = ["-az"]
    if options["delete"]:
        args.append("--delete")
    if options["verbose"]:
        args.append("-v")
    if options["progress"]:
        args.append("--progress")
    if options["ignore_errors"]:
        args.append("--ignore-errors")
    if ignore_existing:
        args.append("--ignore-existing")
    if options["dry_run"]:
        args.append("--dry-run")

    transport = resolve_transport(options)
    if transport is not None:
        args += ["-e", transport.render()]

    if options.get("args"):
        args += shlex.split(str(options["args"]))

    args += [local_path(str(public_dir)), destination(options)]
    return args


def build_plan(public_dir: str, options: Mapping) -> list[list[str]]:
    """Return the ordered rsync runs needed to publish *public_dir*."""
    if options["create_before_update"]:
        return [
            build_rsync_args(public_dir, options, ignore_existing=True),
            build_rsync_args(public_dir, options),
        ]
    return [build_rsync_args(public_dir, options)]


# ──────────────────────────────────────────────────────────────────────────────
# Core execution
# ──────────────────────────────────────────────────────────────────────────────

def spawn(program: str, args: list[str], verbose: bool = True) -> None:
    """Run *program* and wait for it to finish.

    With *verbose* the child writes straight to the terminal; otherwise its
    output is captured and only shown if it fails.

    Raises:
        DeployError: The program could not be started or exited non-zero.
    """
    cmd = [program, *args]
    try:
        if verbose:
            proc = subprocess.run(cmd)
        else:
            proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                  text=True, errors="replace")
    except OSError as exc:
        raise DeployError(f"Could not run {program}: {exc}") from exc

    if proc.returncode != 0:
        msg = f"{program} exited with code {proc.returncode}."
        if proc.stdout:
            msg += "\n" + proc.stdout.rstrip()
        raise DeployError(msg, proc.returncode)


Spawn = Callable[..., None]


def run_plan(plan: list[list[str]], verbose: bool, spawn: Spawn = spawn) -> None:
    """Run every step of *plan* in order, stopping at the first failure."""
    for step in plan:
        spawn("rsync", step, verbose=verbose)


# ──────────────────────────────────────────────────────────────────────────────
# Orchestration
# ──────────────────────────────────────────────────────────────────────────────

def deploy(public_dir: str, config: Optional[Mapping], spawn: Spawn = spawn) -> Optional[list[list[str]]]:
    """Publish *public_dir* according to the deploy *config*.

    Args:
        public_dir: Local directory to publish.
        config: The rsync deploy settings.
        spawn: Process runner, replaceable in tests.

    Returns:
        The executed plan, or None if the configuration is incomplete.

    Raises:
        DeployError: An rsync run failed; later runs are skipped.
    """
    if not validate_config(config):
        return None

    options = normalize_options(config)
    plan = build_plan(public_dir, options)

    colorprint(CYAN, f"🚀 Deploying {public_dir} to {destination(options)}")
    if options["dry_run"]:
        colorprint(ORANGE, "   🔍 Dry run   : True (no changes will be made)")

    try:
        run_plan(plan, options["verbose"], spawn=spawn)
    except DeployError as exc:
        colorprint(RED, f"❌ Deploy failed: {exc}")
        raise

    colorprint(GREEN, "✅ Deploy done.")
    return plan


# ──────────────────────────────────────────────────────────────────────────────
# Site configuration
# ──────────────────────────────────────────────────────────────────────────────

def load_site_config(path: str) -> dict:
    """Parse a site ``_config.yml`` and return its contents as a dict."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path} does not contain a mapping.")
    return data


def rsync_targets(site_config: Mapping) -> list[dict]:
    """Return the rsync entries of the ``deploy`` section.

    ``deploy`` may hold a single mapping or a list of them; entries whose
    ``type`` is something other than ``rsync`` are skipped.
    """
    section = site_config.get("deploy") or []
    if isinstance(section, Mapping):
        section = [section]
    return [
        dict(entry) for entry in section
        if isinstance(entry, Mapping) and entry.get("type", "rsync") == "rsync"
    ]


def public_dir_for(site_config: Mapping, config_path: str) -> str:
    """Resolve ``public_dir`` relative to the directory holding the config file."""
    base = Path(config_path).resolve().parent
    return str(base / site_config.get("public_dir", "public")) + os.sep


# ──────────────────────────────────────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────────────────────────────────────

def main(argv: Optional[list[str]] = None) -> None:
    """Parse CLI arguments and deploy every rsync target of the site config."""
    parser = argparse.ArgumentParser(
        description="Publish a generated site to a remote host with rsync.",
        epilog="Example:\n  rsync-deploy -c _config.yml -n",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-c", "--config", default="_config.yml", help="Site config file (default: _config.yml)")
    parser.add_argument("-p", "--public-dir", help="Directory to publish (default: public_dir from the config)")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Pass --dry-run to rsync")
    args = parser.parse_args(argv)

    try:
        site_config = load_site_config(args.config)
    except ConfigError as exc:
        abort(str(exc))

    if args.public_dir:
        public_dir = args.public_dir.rstrip(os.sep) + os.sep
    else:
        public_dir = public_dir_for(site_config, args.config)
    targets = rsync_targets(site_config) or [{}]

    for target in targets:
        if args.dry_run:
            target["dry_run"] = True
        try:
            plan = deploy(public_dir, target)
        except DeployError as exc:
            sys.exit(exc.returncode)
        if plan is None:
            sys.exit(1)


if __name__ == "__main__":
    main()
