"""Turning a compose build section into `nerdctl build` arguments."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .projectloader import BuildConfig, Project

log = logging.getLogger(__name__)


@dataclass
class Build:
    """How to build a service image."""

    force: bool = False
    build_args: list[str] = field(default_factory=list)


def parse_build_config(config: BuildConfig, project: Project, image_name: str) -> Build:
    """Return the build arguments for *config*, tagging the result *image_name*."""
    if config.extras:
        log.warning("Ignoring: build: %s", sorted(config.extras))
    if not config.context:
        raise ValueError("build: context must be specified")
    if "://" in config.context:
        raise ValueError(
            f"build: URL-style context ({config.context!r}) is not supported yet"
        )
    if os.path.isabs(config.context):
        log.warning("build.config should be relative path, got %r", config.context)
    ctx_dir = project.relative_path(config.context)

    args = ["-t=" + image_name]
    if config.dockerfile:
        if os.path.isabs(config.dockerfile):
            log.warning("build.dockerfile should be relative path, got %r", config.dockerfile)
            args.append("-f=" + config.dockerfile)
        else:
            args.append("-f=" + os.path.join(ctx_dir, config.dockerfile))
    for key, value in config.args.items():
        args.append(f"--build-arg={key}" if value is None else f"--build-arg={key}={value}")
    if config.target:
        args.append("--target=" + config.target)
    args.append(ctx_dir)
    return Build(build_args=args)