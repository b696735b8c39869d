"""
Migration file discovery.

Migrations are plain SQL files named ``<integer>_<description>.sql``.
Versions need not be contiguous but must be unique within a directory, and
they are applied in ascending numeric order regardless of how the
filesystem enumerates them (``10_x.sql`` sorts after ``9_y.sql``).

A migration may be paired with an optional ``<integer>_<description>.down.sql``
rollback script. Down scripts are never loaded as migrations of their own.

File contents are not read here. MigrationFile.read_content() is called by
the executor only when a migration is about to run, so incremental runs do
not touch files whose versions are already in the ledger.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from schema_migrator.exceptions import DiscoveryError

logger = logging.getLogger(__name__)

MIGRATION_SUFFIX = ".sql"
DOWN_SUFFIX = ".down.sql"

# Leading integer token, optionally followed by "_description"
_VERSION_PATTERN = re.compile(r"^(\d+)(?:_(.*))?$")


@dataclass(frozen=True)
class MigrationFile:
    """
    One discovered migration script.

    Attributes:
        version: Leading integer of the filename (007_add_index.sql -> 7)
        filename: Base filename
        path: Full path to the up script
        description: Filename text after the version, "_" replaced by spaces
        down_path: Paired .down.sql script, if one exists
    """

    version: int
    filename: str
    path: Path
    description: str = ""
    down_path: Path | None = None

    def read_content(self) -> str:
        """Read the up script from disk."""
        return self.path.read_text(encoding="utf-8")

    def read_down_content(self) -> str | None:
        """Read the paired down script, or None when there is none."""
        if self.down_path is None:
            return None
        return self.down_path.read_text(encoding="utf-8")

    @property
    def label(self) -> str:
        """Zero-padded version plus filename, for log lines."""
        return f"{self.version:03d} ({self.filename})"


def parse_version(filename: str) -> tuple[int, str]:
    """
    Parse version number and description from a migration filename.

    Args:
        filename: Base filename such as "007_add_index.sql" or
            "007_add_index.down.sql"

    Returns:
        Tuple of (version, description)

    Raises:
        DiscoveryError: If the filename has no leading numeric token

    Examples:
        >>> parse_version("007_add_index.sql")
        (7, 'add index')
        >>> parse_version("0001_init_pgvector.sql")
        (1, 'init pgvector')
    """
    stem = filename
    for suffix in (DOWN_SUFFIX, MIGRATION_SUFFIX):
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
            break

    match = _VERSION_PATTERN.match(stem)
    if not match:
        raise DiscoveryError(
            f"Migration filename has no leading version number: {filename} "
            f"(expected <integer>_<description>.sql)"
        )

    version = int(match.group(1))
    description = (match.group(2) or "").replace("_", " ").strip()
    return version, description


def load_migrations(directory: str | Path) -> list[MigrationFile]:
    """
    Discover migrations in a directory, sorted by version ascending.

    Args:
        directory: Directory containing *.sql migration files

    Returns:
        List of MigrationFile sorted strictly ascending by version

    Raises:
        DiscoveryError: If the directory does not exist, a filename has no
            leading version number, two files share a version, or a down
            script has no matching up migration
    """
    directory = Path(directory)

    if not directory.is_dir():
        raise DiscoveryError(f"Migrations directory not found: {directory}")

    up_files: dict[int, Path] = {}
    down_files: dict[int, Path] = {}

    for path in directory.iterdir():
        if not path.is_file() or not path.name.endswith(MIGRATION_SUFFIX):
            continue

        version, _ = parse_version(path.name)
        target = down_files if path.name.endswith(DOWN_SUFFIX) else up_files

        if version in target:
            names = sorted([target[version].name, path.name])
            raise DiscoveryError(
                f"Duplicate migration version {version}: {', '.join(names)}"
            )
        target[version] = path

    orphans = sorted(set(down_files) - set(up_files))
    if orphans:
        names = ", ".join(down_files[v].name for v in orphans)
        raise DiscoveryError(f"Rollback scripts without a matching migration: {names}")

    migrations = []
    for version in sorted(up_files):
        path = up_files[version]
        _, description = parse_version(path.name)
        migrations.append(
            MigrationFile(
                version=version,
                filename=path.name,
                path=path,
                description=description,
                down_path=down_files.get(version),
            )
        )

    logger.info(
        f"Discovered {len(migrations)} migrations in {directory}",
        extra={
            "context": {
                "directory": str(directory),
                "versions": [m.version for m in migrations],
                "with_rollback": sum(1 for m in migrations if m.down_path),
            }
        },
    )
    return migrations
