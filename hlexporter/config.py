"""Exporter configuration from the environment, a .env file and flags."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from hlexporter import logger


@dataclass(frozen=True)
class Flags:
    """Command-line values that override the environment when non-empty."""

    node_home: str = ""
    node_binary: str = ""
    chain: str = ""


@dataclass
class Config:
    """Resolved locations of the node and the chain it runs on."""

    home_dir: str = ""
    node_home: str = ""
    binary_home: str = ""
    node_binary: str = ""
    chain: str = ""


def load_config(flags: Flags | None = None) -> Config:
    """Read ``.env`` and the environment, then apply non-empty flags."""
    env_file = Path(".env")
    if not (env_file.is_file() and load_dotenv(env_file)):
        logger.debug("No .env file found, using environment variables and flags")

    home_dir = os.environ.get("HOME", "")
    node_home = os.environ.get("NODE_HOME") or home_dir + "/hl"
    binary_home = os.environ.get("BINARY_HOME") or home_dir
    node_binary = os.environ.get("NODE_BINARY") or binary_home + "/hl-node"

    config = Config(
        home_dir=home_dir,
        node_home=node_home,
        binary_home=binary_home,
        node_binary=node_binary,
    )
    if flags is not None:
        if flags.node_home:
            config.node_home = flags.node_home
        if flags.node_binary:
            config.node_binary = flags.node_binary
        if flags.chain:
            config.chain = flags.chain
    return config