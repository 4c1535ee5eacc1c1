"""Resource record storage.

Saves the resource record as a YAML snapshot and writes the auxiliary VPC id
and public subnet files consumed by other tooling.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

import yaml

from e2e_fixtures.errors import DeserializationError, PersistenceError
from e2e_fixtures.models.resources import Resources
from e2e_fixtures.models.vpc import VPC

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ResourcesStorage:
    """Resource record persistence.

    Every save replaces the record file atomically: content goes to a
    temporary file in the same directory which is then renamed over the
    target, so readers only ever see a complete snapshot.

    Attributes:
        user_data_file: Path of the record file
        vpc_id_file: Path of the VPC id file
        public_subnets_file: Path of the public subnets file
    """

    def __init__(
        self,
        user_data_file: PathLike,
        vpc_id_file: Optional[PathLike] = None,
        public_subnets_file: Optional[PathLike] = None,
    ) -> None:
        """Initialize storage.

        Args:
            user_data_file: Record file path
            vpc_id_file: VPC id file path (default: "vpc_id" next to the record file)
            public_subnets_file: Public subnets file path (default: "public_subnets" next to the record file)
        """
        self.user_data_file = Path(user_data_file)
        base_dir = self.user_data_file.parent
        self.vpc_id_file = Path(vpc_id_file) if vpc_id_file else base_dir / "vpc_id"
        self.public_subnets_file = Path(public_subnets_file) if public_subnets_file else base_dir / "public_subnets"

    @classmethod
    def from_config(cls, config) -> "ResourcesStorage":
        return cls(
            user_data_file=config.user_data_file,
            vpc_id_file=config.vpc_id_file,
            public_subnets_file=config.public_subnets_file,
        )

    def exists(self) -> bool:
        return self.user_data_file.exists()

    def save(self, resources: Resources, vpc: Optional[VPC] = None) -> Path:
        """Write the record, and the VPC projections when a VPC handle is given.

        Args:
            resources: Record to persist
            vpc: Cached VPC handle (optional)

        Returns:
            Path of the record file

        Raises:
            PersistenceError: If any file cannot be written
        """
        content = yaml.safe_dump(resources.to_dict(), default_flow_style=False, sort_keys=False)
        self._write_atomic(self.user_data_file, content)

        if vpc is not None:
            self._write_atomic(self.vpc_id_file, vpc.vpc_id)
            public_subnets = vpc.all_public_subnet_ids()
            if public_subnets:
                self._write_atomic(self.public_subnets_file, f"['{public_subnets[0]}']")

        logger.debug(f"Saved resource record to {self.user_data_file}")
        return self.user_data_file

    def load(self, path: Optional[PathLike] = None) -> Resources:
        """Load a record snapshot.

        Args:
            path: File to read (default: the configured record file)

        Returns:
            Loaded Resources

        Raises:
            DeserializationError: If the file content is not a valid record
            PersistenceError: If the file cannot be read
        """
        source = Path(path) if path else self.user_data_file
        try:
            with open(source, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise DeserializationError(f"Cannot parse resource record {source}: {e}", path=str(source))
        except OSError as e:
            raise PersistenceError(f"Cannot read resource record {source}: {e}", path=str(source))

        if data is None:
            return Resources()
        if not isinstance(data, dict):
            raise DeserializationError(
                f"Cannot parse resource record {source}: expected a mapping, got {type(data).__name__}",
                path=str(source),
            )
        try:
            return Resources.from_dict(data)
        except ValueError as e:
            raise DeserializationError(f"Cannot parse resource record {source}: {e}", path=str(source))

    def clear(self) -> None:
        """Remove the record and auxiliary files if present."""
        for path in (self.user_data_file, self.vpc_id_file, self.public_subnets_file):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise PersistenceError(f"Cannot remove {path}: {e}", path=str(path))

    def _write_atomic(self, path: Path, content: str) -> None:
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Cannot write {path}: {e}", path=str(path))
