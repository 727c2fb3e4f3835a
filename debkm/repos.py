"""APT repository lines in /etc/apt/sources.list and sources.list.d/*.list."""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from .errors import MutationError, PreconditionError
from .models import Repository
from .runner import CommandRunner, privileged

log = logging.getLogger(__name__)

SOURCES_LIST = "/etc/apt/sources.list"
SOURCES_DIR = "/etc/apt/sources.list.d"
NEW_REPO_FILE = "debkm-custom.list"


def parse_sources_line(line: str) -> Optional[Repository]:
    """
    One sources.list line → Repository, or None for blanks, comments and
    anything malformed.  A leading '#' on a deb line means disabled.
        # deb [arch=amd64] http://deb.debian.org/debian bookworm main non-free
    """
    line = line.strip()
    if not line:
        return None
    enabled = not line.startswith("#")
    clean = line.lstrip("#").strip()
    parts = clean.split()
    if not parts or parts[0] not in ("deb", "deb-src"):
        return None

    options = []
    rest = parts[1:]
    if rest and rest[0].startswith("["):
        while rest:
            token = rest.pop(0)
            options.append(token.strip("[]"))
            if token.endswith("]"):
                break
        options = [o for o in options if o]
    if len(rest) < 3:
        return None

    uri, distribution = rest[0], rest[1]
    name = uri.rstrip("/").split("/")[-1].replace("http://", "").replace("https://", "") or uri
    return Repository(
        name=name,
        uri=uri,
        distribution=distribution,
        components=" ".join(rest[2:]),
        enabled=enabled,
        is_source=parts[0] == "deb-src",
        options=options,
    )


def _source_files(root: str) -> List[Path]:
    base = Path(root)
    files = [base / SOURCES_LIST.lstrip("/")]
    d = base / SOURCES_DIR.lstrip("/")
    if d.is_dir():
        files += sorted(d.glob("*.list"))
    return files


def get_repositories(root: str = "/") -> List[Repository]:
    repositories = []
    for path in _source_files(root):
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            continue
        for number, line in enumerate(lines):
            repo = parse_sources_line(line)
            if repo:
                repo.file_path = str(path)
                repo.line_number = number
                repositories.append(repo)
    return repositories


def nonfree_enabled(root: str = "/") -> bool:
    """An enabled repository ships a non-free component (one-line or deb822 sources)."""
    if any(r.enabled and "non-free" in r.components.split() for r in get_repositories(root)):
        return True
    d = Path(root) / SOURCES_DIR.lstrip("/")
    if d.is_dir():
        for path in d.glob("*.sources"):
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            for line in text.splitlines():
                key, _, value = line.partition(":")
                if key.strip() == "Components" and "non-free" in value.split():
                    return True
    return False


# ─── Mutations ────────────────────────────────────────────────────────────────

def _install_file(runner: CommandRunner, content: str, target: str) -> None:
    """Write content to a temp file, then copy it over target as root."""
    fd, tmp = tempfile.mkstemp(prefix="debkm-", suffix=".list")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        result = runner.run(privileged(["install", "-m", "0644", tmp, target]))
    finally:
        os.unlink(tmp)
    if not result.ok:
        raise MutationError(f"Could not write {target}: {result.stderr.strip()}", result.returncode)


def _rewrite_line(repo: Repository, new_line: Optional[str], runner: CommandRunner) -> None:
    if repo.file_path is None or repo.line_number is None:
        raise PreconditionError(f"Repository {repo.uri} has no source file")
    try:
        lines = Path(repo.file_path).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise MutationError(f"Could not read {repo.file_path}: {e}") from e
    if repo.line_number >= len(lines):
        raise PreconditionError(f"{repo.file_path} changed since it was read")
    if new_line is None:
        del lines[repo.line_number]
    else:
        lines[repo.line_number] = new_line
    _install_file(runner, "\n".join(lines) + "\n", repo.file_path)


def add_repository(uri: str, distribution: str, components: str, runner=None,
                   root: str = "/", filename: str = NEW_REPO_FILE) -> Repository:
    if not uri or not distribution or not components:
        raise PreconditionError("URI, distribution and components are required")
    runner = runner or CommandRunner()
    repo = Repository("Custom Repository", uri, distribution, components)
    target = Path(root) / SOURCES_DIR.lstrip("/") / filename
    existing = ""
    if target.exists():
        existing = target.read_text(encoding="utf-8")
        if existing and not existing.endswith("\n"):
            existing += "\n"
    _install_file(runner, existing + repo.to_sources_list_line() + "\n", str(target))
    log.info("Repository added: %s", repo.to_sources_list_line())
    return repo


def remove_repository(repo: Repository, runner=None) -> None:
    _rewrite_line(repo, None, runner or CommandRunner())


def toggle_repository(repo: Repository, runner=None) -> Repository:
    """Comment the line out, or back in."""
    toggled = Repository(repo.name, repo.uri, repo.distribution, repo.components,
                         not repo.enabled, repo.is_source, repo.file_path, repo.line_number,
                         list(repo.options))
    _rewrite_line(repo, toggled.to_sources_list_line(), runner or CommandRunner())
    return toggled


def update_repositories(runner=None, on_line=log.info) -> None:
    runner = runner or CommandRunner()
    rc = runner.stream(privileged(["apt", "update"]), on_line)
    if rc != 0:
        raise MutationError(f"apt update failed (exit {rc})", rc)
