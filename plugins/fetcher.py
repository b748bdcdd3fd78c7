"""Plugin bundle fetcher.

Retrieves a bundle named by a locator into a private staging directory
under ``<install_root>/.staging``. Nothing here touches the live plugin
directory; promotion belongs to the Installer.

Supported locators:
    https://host/path/bundle.tar.gz     archive download (.tar.gz, .tgz, .tar, .zip)
    git+https://host/repo.git#v1.2      git clone (optional #branch-or-tag)
    https://github.com/owner/repo       git clone
    github:owner/repo                   git clone from GitHub
    /abs/path or ./rel/path             local directory or archive
    file:///abs/path                    local directory or archive
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import subprocess
import tarfile
import time
import uuid
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, TypeVar
from urllib.parse import unquote, urlparse

import httpx

from plugins.errors import (
    FetchError,
    IntegrityMismatch,
    InvalidBundleLayout,
    InvalidManifestFormat,
    NetworkError,
    NotFound,
    SkillmarketError,
)
from plugins.manifest import PluginManifest, find_manifest_file, load_manifest
from plugins.skill_files import discover_skills

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGING_DIRNAME = ".staging"
OWNER_FILENAME = ".owner"
ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")
GIT_HOSTS = ("github.com", "gitlab.com", "bitbucket.org")
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
IGNORED_NAMES = {".git", ".DS_Store", "__pycache__"}

_GIT_NOT_FOUND = re.compile(
    r"repository not found|not found|does not exist|could not find remote branch|"
    r"remote branch .* not found",
    re.IGNORECASE,
)
_GIT_TRANSIENT = re.compile(
    r"could not resolve host|connection (timed out|reset|refused)|timed out|"
    r"early eof|unable to access|the remote end hung up|network is unreachable",
    re.IGNORECASE,
)


class LocatorKind(str, Enum):
    ARCHIVE_URL = "archive_url"
    GIT = "git"
    LOCAL = "local"


@dataclass(frozen=True)
class Locator:
    """A parsed source locator."""

    raw: str
    kind: LocatorKind
    target: str
    ref: str | None = None

    @classmethod
    def parse(cls, raw: str) -> Locator:
        raw = raw.strip()
        if not raw:
            raise NotFound("empty source locator")

        base, _, fragment = raw.partition("#")
        ref = fragment or None

        if base.startswith("git+"):
            return cls(raw, LocatorKind.GIT, base[4:], ref)
        if base.startswith("github:"):
            repo = base[len("github:"):].strip("/")
            return cls(raw, LocatorKind.GIT, f"https://github.com/{repo}.git", ref)
        if re.match(r"^[\w.-]+@[\w.-]+:", base) or base.startswith("ssh://"):
            return cls(raw, LocatorKind.GIT, base, ref)

        parsed = urlparse(base)
        if parsed.scheme in ("http", "https"):
            path = parsed.path.rstrip("/")
            if path.endswith(".git"):
                return cls(raw, LocatorKind.GIT, base, ref)
            if parsed.hostname in GIT_HOSTS and len(path.strip("/").split("/")) == 2:
                return cls(raw, LocatorKind.GIT, base, ref)
            return cls(raw, LocatorKind.ARCHIVE_URL, base)
        if parsed.scheme == "file":
            return cls(raw, LocatorKind.LOCAL, unquote(parsed.path))

        return cls(raw, LocatorKind.LOCAL, str(Path(raw).expanduser()))


@dataclass
class StagedBundle:
    """A fetched, verified bundle waiting to be promoted.

    Attributes:
        path: Bundle root (contains the plugin manifest).
        staging_dir: Private directory holding ``path``; discarded after promotion.
        source: Locator the bundle came from.
        manifest: Manifest read during verification.
        name: Expected plugin name (index entry name), if known.
        fingerprint: sha256 over the bundle tree.
        archive_sha256: sha256 of the downloaded archive, for archive sources.
    """

    path: Path
    staging_dir: Path
    source: str
    manifest: PluginManifest
    name: str | None = None
    fingerprint: str = ""
    archive_sha256: str | None = None

    def discard(self) -> None:
        shutil.rmtree(self.staging_dir, ignore_errors=True)


@dataclass(frozen=True)
class FetchRequest:
    locator: str
    name: str | None = None
    sha256: str | None = None


def tree_fingerprint(root: Path) -> str:
    """sha256 over relative paths and file contents, ignoring VCS metadata."""
    digest = hashlib.sha256()
    root = Path(root)
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in IGNORED_NAMES)
        for filename in sorted(files):
            if filename in IGNORED_NAMES:
                continue
            path = Path(current) / filename
            relative = path.relative_to(root).as_posix()
            digest.update(relative.encode("utf-8") + b"\0")
            if path.is_symlink():
                digest.update(b"link:" + os.readlink(path).encode("utf-8"))
            else:
                with open(path, "rb") as f:
                    for chunk in iter(lambda: f.read(65536), b""):
                        digest.update(chunk)
            digest.update(b"\0")
    return digest.hexdigest()


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_bundle(root: Path, expected_name: str | None = None) -> PluginManifest:
    """Check a bundle's layout before it may be installed.

    Raises:
        InvalidManifestFormat: Manifest missing/invalid or its name differs
            from ``expected_name``.
        UnsupportedCapabilityKind: Manifest declares an unknown capability.
        InvalidBundleLayout: A declared capability directory is missing.
        MissingTriggerDescription: A skill has no trigger description.
        InvalidFormat: A skill file is malformed or two skills share an id.
    """
    manifest = load_manifest(root)

    if expected_name is not None and manifest.name != expected_name:
        raise InvalidManifestFormat(
            f"manifest name {manifest.name!r} does not match the listed name "
            f"{expected_name!r}",
            expected_name,
        )

    for kind, spec in manifest.capabilities.items():
        directory = root / spec.directory
        if not directory.is_dir():
            raise InvalidBundleLayout(
                f"declares {kind.value} in {spec.directory!r} but that directory is missing",
                manifest.name,
            )

    discover_skills(root, manifest)
    return manifest


class Fetcher:
    """Fetch plugin bundles into staging.

    Example:
        >>> fetcher = Fetcher(Path("~/.skillmarket").expanduser())
        >>> staged = fetcher.fetch("github:acme/ui-polish", name="ui-polish")
        >>> staged.manifest.version
        '1.0.0'
    """

    def __init__(
        self,
        install_root: Path,
        timeout: float = 60.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the fetcher.

        Args:
            install_root: Install root; staging happens in ``<root>/.staging``.
            timeout: Per-request timeout in seconds.
            max_attempts: Attempts for transient failures (at least 1).
            backoff_base: First retry delay; doubles each attempt.
            transport: Optional httpx transport (tests use MockTransport).
            sleep: Sleep function used between retries.
        """
        self.install_root = Path(install_root)
        self.staging_root = self.install_root / STAGING_DIRNAME
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.transport = transport
        self._sleep = sleep

    # -- public API ---------------------------------------------------------

    def fetch(
        self,
        locator: str,
        name: str | None = None,
        sha256: str | None = None,
    ) -> StagedBundle:
        """Fetch and verify a bundle.

        Args:
            locator: Source locator (URL, git reference or path).
            name: Expected plugin name; the manifest must match it.
            sha256: Expected checksum (archive bytes, or tree fingerprint
                for directory and git sources).

        Returns:
            StagedBundle ready for promotion.

        Raises:
            NetworkError: Transient failure persisted through all attempts.
            NotFound: The source does not exist.
            IntegrityMismatch: Checksum mismatch.
            InvalidFormat: Bundle layout or manifest invalid.
        """
        parsed = Locator.parse(locator)
        label = name or _label_for(parsed)
        staging_dir = self._new_staging_dir(label)
        logger.info("Fetching %s from %s", label, locator)

        try:
            root, archive_sha256 = self._stage(parsed, staging_dir, label, sha256)
            fingerprint = tree_fingerprint(root)
            if archive_sha256 is None:
                self._check_integrity(fingerprint, sha256, label)

            manifest = verify_bundle(root, expected_name=name)
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise

        logger.info("Staged %s %s at %s", manifest.name, manifest.version, root)
        return StagedBundle(
            path=root,
            staging_dir=staging_dir,
            source=locator,
            manifest=manifest,
            name=name,
            fingerprint=fingerprint,
            archive_sha256=archive_sha256,
        )

    def fetch_many(
        self, requests: list[FetchRequest], max_workers: int = 4
    ) -> list[StagedBundle | SkillmarketError]:
        """Fetch several bundles in parallel.

        Returns one result per request, in request order: the staged bundle
        or the error that stopped it.
        """
        if not requests:
            return []

        def run(request: FetchRequest) -> StagedBundle | SkillmarketError:
            try:
                return self.fetch(request.locator, name=request.name, sha256=request.sha256)
            except SkillmarketError as e:
                return e

        workers = max(1, min(max_workers, len(requests)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(run, requests))

    def fetch_bytes(self, url: str, label: str) -> bytes:
        """Download a small document (e.g. a marketplace index) with retries."""
        return self._with_retries(lambda: self._get_bytes(url, label), label)

    def fetch_tree(self, locator: str, label: str) -> tuple[Path, Path]:
        """Stage any tree (e.g. a marketplace repository) without plugin checks.

        Returns:
            ``(staging_dir, root)``; the caller owns ``staging_dir``.
        """
        parsed = Locator.parse(locator)
        staging_dir = self._new_staging_dir(label)
        try:
            root, _ = self._stage(parsed, staging_dir, label, None)
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        return staging_dir, root

    def _stage(
        self, parsed: Locator, staging_dir: Path, label: str, sha256: str | None
    ) -> tuple[Path, str | None]:
        archive_sha256: str | None = None
        if parsed.kind == LocatorKind.ARCHIVE_URL:
            archive = self._with_retries(
                lambda: self._download(parsed.target, staging_dir, label), label
            )
            archive_sha256 = file_sha256(archive)
            self._check_integrity(archive_sha256, sha256, label)
            root = self._extract(archive, staging_dir / "bundle", label)
            archive.unlink()
        elif parsed.kind == LocatorKind.GIT:
            root = self._with_retries(
                lambda: self._clone(parsed.target, parsed.ref, staging_dir, label),
                label,
            )
        else:
            root, archive_sha256 = self._copy_local(Path(parsed.target), staging_dir, label)
            if archive_sha256 is not None:
                self._check_integrity(archive_sha256, sha256, label)
        return root, archive_sha256

    # -- retry --------------------------------------------------------------

    def _with_retries(self, operation: Callable[[], T], label: str) -> T:
        for attempt in range(self.max_attempts):
            try:
                return operation()
            except NetworkError as e:
                if attempt + 1 >= self.max_attempts:
                    logger.error(
                        "Giving up on %s after %d attempts: %s", label, attempt + 1, e
                    )
                    raise
                delay = self.backoff_base * (2 ** attempt)
                logger.warning(
                    "Transient failure fetching %s (attempt %d/%d): %s; retrying in %.1fs",
                    label, attempt + 1, self.max_attempts, e, delay,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    # -- HTTP ---------------------------------------------------------------

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        )

    def _raise_for_status(self, response: httpx.Response, url: str, label: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (404, 410):
            raise NotFound(f"{url} returned HTTP {status}", label)
        if status in RETRYABLE_STATUS:
            raise NetworkError(f"{url} returned HTTP {status}", label)
        raise FetchError(f"{url} returned HTTP {status}", label)

    def _get_bytes(self, url: str, label: str) -> bytes:
        try:
            with self._client() as client:
                response = client.get(url)
                self._raise_for_status(response, url, label)
                return response.content
        except httpx.RequestError as e:
            raise NetworkError(f"connection error for {url}: {e}", label)

    def _download(self, url: str, staging_dir: Path, label: str) -> Path:
        name = Path(urlparse(url).path).name or "bundle"
        target = staging_dir / f"download-{name}"
        try:
            with self._client() as client:
                with client.stream("GET", url) as response:
                    self._raise_for_status(response, url, label)
                    with open(target, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
        except httpx.RequestError as e:
            target.unlink(missing_ok=True)
            raise NetworkError(f"connection error for {url}: {e}", label)
        return target

    # -- archives -----------------------------------------------------------

    def _extract(self, archive: Path, dest: Path, label: str) -> Path:
        dest.mkdir(parents=True, exist_ok=True)
        try:
            if zipfile.is_zipfile(archive):
                with zipfile.ZipFile(archive) as zf:
                    root = dest.resolve()
                    for member in zf.namelist():
                        target = (dest / member).resolve()
                        if target != root and root not in target.parents:
                            raise InvalidBundleLayout(
                                f"archive member {member!r} escapes the bundle", label
                            )
                    zf.extractall(dest)
            elif tarfile.is_tarfile(archive):
                with tarfile.open(archive, "r:*") as tar:
                    if hasattr(tarfile, "data_filter"):
                        tar.extractall(dest, filter="data")
                    else:
                        tar.extractall(dest, members=_checked_tar_members(tar, dest, label))
            else:
                raise InvalidBundleLayout(
                    f"{archive.name} is not a tar or zip archive", label
                )
        except (tarfile.TarError, zipfile.BadZipFile) as e:
            raise InvalidBundleLayout(f"cannot extract {archive.name}: {e}", label)

        return _unwrap_single_dir(dest)

    # -- git ----------------------------------------------------------------

    def _run_git(self, *args: str, label: str) -> subprocess.CompletedProcess[str]:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            result = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                env=env,
                timeout=self.timeout * 5,
            )
        except FileNotFoundError:
            raise FetchError("git is required for repository sources", label)
        except subprocess.TimeoutExpired:
            raise NetworkError(f"git {args[0]} timed out", label)

        if result.returncode != 0:
            stderr = result.stderr.strip()
            if _GIT_TRANSIENT.search(stderr):
                raise NetworkError(f"git {args[0]} failed: {stderr}", label)
            if _GIT_NOT_FOUND.search(stderr):
                raise NotFound(f"git {args[0]} failed: {stderr}", label)
            raise FetchError(f"git {args[0]} failed: {stderr}", label)
        return result

    def _clone(self, url: str, ref: str | None, staging_dir: Path, label: str) -> Path:
        dest = staging_dir / "bundle"
        shutil.rmtree(dest, ignore_errors=True)
        args = ["clone", "--depth", "1", "--quiet"]
        if ref:
            args += ["--branch", ref]
        self._run_git(*args, url, str(dest), label=label)
        shutil.rmtree(dest / ".git", ignore_errors=True)
        return dest

    # -- local --------------------------------------------------------------

    def _copy_local(
        self, source: Path, staging_dir: Path, label: str
    ) -> tuple[Path, str | None]:
        if source.is_dir():
            dest = staging_dir / "bundle"
            shutil.copytree(source, dest, ignore=shutil.ignore_patterns(*IGNORED_NAMES))
            return dest, None
        if source.is_file():
            archive_sha256 = file_sha256(source)
            return self._extract(source, staging_dir / "bundle", label), archive_sha256
        raise NotFound(f"source path does not exist: {source}", label)

    # -- helpers ------------------------------------------------------------

    def _new_staging_dir(self, label: str) -> Path:
        self.staging_root.mkdir(parents=True, exist_ok=True)
        staging_dir = self.staging_root / f"{label}-{uuid.uuid4().hex[:12]}"
        staging_dir.mkdir()
        (staging_dir / OWNER_FILENAME).write_text(str(os.getpid()))
        return staging_dir

    def _check_integrity(self, actual: str, expected: str | None, label: str) -> None:
        if expected and actual.lower() != expected.lower():
            raise IntegrityMismatch(
                f"checksum mismatch (expected {expected}, got {actual}); "
                "the download may be corrupted or tampered with",
                label,
            )


def _checked_tar_members(
    tar: tarfile.TarFile, dest: Path, label: str
) -> list[tarfile.TarInfo]:
    """Members that stay inside ``dest``, for interpreters without tar filters."""
    root = dest.resolve()

    def inside(path: Path) -> bool:
        resolved = path.resolve()
        return resolved == root or root in resolved.parents

    members = []
    for member in tar.getmembers():
        target = dest / member.name
        if member.isdev() or not inside(target):
            raise InvalidBundleLayout(f"archive member {member.name!r} escapes the bundle", label)
        if member.issym() and not inside(target.parent / member.linkname):
            raise InvalidBundleLayout(f"archive link {member.name!r} escapes the bundle", label)
        if member.islnk() and not inside(dest / member.linkname):
            raise InvalidBundleLayout(f"archive link {member.name!r} escapes the bundle", label)
        members.append(member)
    return members


def _unwrap_single_dir(dest: Path) -> Path:
    if find_manifest_file(dest) is not None:
        return dest
    entries = [p for p in dest.iterdir() if p.name not in IGNORED_NAMES]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return dest


def _label_for(locator: Locator) -> str:
    tail = locator.target.rstrip("/").split("/")[-1] or "bundle"
    for suffix in (".git", *ARCHIVE_SUFFIXES):
        if tail.endswith(suffix):
            tail = tail[: -len(suffix)]
    return re.sub(r"[^A-Za-z0-9._-]", "-", tail) or "bundle"
