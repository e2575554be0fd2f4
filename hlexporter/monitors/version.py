"""Node software version and whether it matches the latest published release."""

from __future__ import annotations

import hashlib
import os
import queue
import shutil
import subprocess
import threading
import time
from collections.abc import Callable

import requests

from hlexporter import logger
from hlexporter.config import Config

BINARY_URL = "https://binaries.hyperliquid.xyz/Mainnet/hl-visor"
LOCAL_BINARY_PATH = "/tmp/hl-visor-latest"
CURRENT_BINARY_PATH = "/tmp/hl_node_current"
DOWNLOAD_INTERVAL = 5 * 60.0
VERSION_INTERVAL = 60.0
UPDATE_INTERVAL = 300.0
_CHUNK_SIZE = 64 * 1024


def parse_version_output(output: str) -> tuple[str | None, str]:
    """Split ``--version`` output into its commit hash and build date.

    The output has at least three ``|``-separated fields; the first holds the
    commit as its second space-separated word. The commit is None when that
    word is missing. Raises ValueError when there are fewer than three fields.
    """
    parts = output.split("|")
    if len(parts) < 3:
        raise ValueError(f"unexpected version output format: {output}")
    date = parts[1].strip()
    commit_parts = parts[0].split(" ")
    commit = commit_parts[1].strip() if len(commit_parts) >= 2 else None
    return commit, date


def file_sha256(path: str | os.PathLike[str]) -> str:
    """Return the hex SHA-256 digest of the file at *path*."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _run_version(path: str) -> str:
    try:
        result = subprocess.run(
            [path, "--version"], stdout=subprocess.PIPE, check=True
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError(f"error running version command: {exc}") from exc
    return result.stdout.decode("utf-8", errors="replace")


class SoftwareVersion:
    """Tracks the running node's commit and compares it with the latest release."""

    def __init__(
        self,
        metrics,
        current_binary_path: str = CURRENT_BINARY_PATH,
        local_binary_path: str = LOCAL_BINARY_PATH,
        binary_url: str = BINARY_URL,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.metrics = metrics
        self.current_binary_path = current_binary_path
        self.local_binary_path = local_binary_path
        self.binary_url = binary_url
        self.current_commit_hash = ""
        self.last_download_time: float | None = None
        self._session = session if session is not None else requests.Session()
        self._clock = clock
        self._lock = threading.Lock()

    def _since_download(self) -> float | None:
        if self.last_download_time is None:
            return None
        return self._clock() - self.last_download_time

    def update_version_info(self, node_binary: str) -> None:
        """Copy *node_binary* aside, run it and publish its commit and date."""
        try:
            shutil.copyfile(node_binary, self.current_binary_path)
            os.chmod(self.current_binary_path, 0o755)
        except OSError as exc:
            raise RuntimeError(f"error copying binary: {exc}") from exc

        commit, date = parse_version_output(_run_version(self.current_binary_path))
        with self._lock:
            if commit is not None:
                self.current_commit_hash = commit
            current = self.current_commit_hash
        self.metrics.set_software_version(current, date)
        logger.info("Updated software version: commit=%s, date=%s", current, date)

    def should_download_new_binary(self) -> bool:
        """Decide whether the latest release binary has to be fetched again."""
        since = self._since_download()
        if since is not None and since < DOWNLOAD_INTERVAL:
            return False
        if not os.path.exists(self.local_binary_path):
            return True
        try:
            response = self._session.head(self.binary_url, allow_redirects=True, timeout=10)
        except requests.RequestException as exc:
            raise RuntimeError(f"error checking remote binary: {exc}") from exc
        remote_etag = response.headers.get("ETag", "")
        if not remote_etag:
            since = self._since_download()
            return since is None or since > DOWNLOAD_INTERVAL
        try:
            local_hash = file_sha256(self.local_binary_path)
        except OSError:
            return True
        return local_hash != remote_etag

    def _download(self) -> None:
        try:
            with self._session.get(self.binary_url, stream=True, timeout=60) as response:
                response.raise_for_status()
                with open(self.local_binary_path, "wb") as handle:
                    for chunk in response.iter_content(_CHUNK_SIZE):
                        handle.write(chunk)
        except (OSError, requests.RequestException) as exc:
            raise RuntimeError(f"error downloading latest binary: {exc}") from exc
        try:
            os.chmod(self.local_binary_path, 0o755)
        except OSError as exc:
            raise RuntimeError(
                f"error changing permissions of latest binary: {exc}"
            ) from exc
        self.last_download_time = self._clock()
        logger.info("Downloaded new binary version")

    def check_software_update(self) -> bool:
        """Fetch the latest release if needed and publish whether the node runs it."""
        try:
            needs_download = self.should_download_new_binary()
        except RuntimeError as exc:
            raise RuntimeError(f"error checking binary status: {exc}") from exc
        if needs_download:
            self._download()

        output = _run_version(self.local_binary_path)
        try:
            latest, _ = parse_version_output(output)
        except ValueError:
            latest = None
        if latest is None:
            raise ValueError(f"unexpected latest version output format: {output}")

        with self._lock:
            current = self.current_commit_hash
        up_to_date = current == latest
        self.metrics.set_software_up_to_date(up_to_date)
        if up_to_date:
            logger.info("Software is up to date")
        else:
            logger.info(
                "Software is NOT up to date. Current: %s, Latest: %s", current, latest
            )
        return up_to_date


def _run_periodically(
    interval: float,
    task: Callable[[], object],
    prefix: str,
    errors: queue.Queue,
    stop: threading.Event,
) -> None:
    while not stop.wait(interval):
        try:
            task()
        except (OSError, ValueError, RuntimeError, requests.RequestException) as exc:
            error = RuntimeError(f"{prefix}: {exc}")
            error.__cause__ = exc
            errors.put(error)


def start_version_monitor(
    cfg: Config, version: SoftwareVersion, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Refresh the node's version every minute in a background thread."""
    thread = threading.Thread(
        target=_run_periodically,
        args=(
            VERSION_INTERVAL,
            lambda: version.update_version_info(cfg.node_binary),
            "version monitor error",
            errors,
            stop,
        ),
        name="version-monitor",
        daemon=True,
    )
    thread.start()
    return thread


def start_update_checker(
    version: SoftwareVersion, errors: queue.Queue, stop: threading.Event
) -> threading.Thread:
    """Compare with the latest release every five minutes in a background thread."""
    thread = threading.Thread(
        target=_run_periodically,
        args=(
            UPDATE_INTERVAL,
            version.check_software_update,
            "update checker error",
            errors,
            stop,
        ),
        name="update-checker",
        daemon=True,
    )
    thread.start()
    return thread