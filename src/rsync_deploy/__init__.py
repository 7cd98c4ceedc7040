# src/rsync_deploy/__init__.py
"""
rsync_deploy – publish a generated site with rsync.

Re‑export the main public API so users can just:
    import rsync_deploy as rd
"""

from .rsync_deploy import (      # noqa: F401
    main,
    deploy,
    validate_config,
    normalize_options,
    resolve_transport,
    build_rsync_args,
    build_plan,
    run_plan,
    spawn,
    load_site_config,
    rsync_targets,
    public_dir_for,
    cygwin_path,
    colorprint,
    Transport,
    DeployError,
    ConfigError,
    DEFAULTS,
    HELP_TEXT,
    GREEN,
    CYAN,
    RED,
    RESET,
)

__all__ = [
    # functions
    "main",
    "deploy",
    "validate_config",
    "normalize_options",
    "resolve_transport",
    "build_rsync_args",
    "build_plan",
    "run_plan",
    "spawn",
    "load_site_config",
    "rsync_targets",
    "public_dir_for",
    "cygwin_path",
    "colorprint",
    # types
    "Transport",
    "DeployError",
    "ConfigError",
    # constants
    "DEFAULTS",
    "HELP_TEXT",
    "GREEN",
    "CYAN",
    "RED",
    "RESET",
]
