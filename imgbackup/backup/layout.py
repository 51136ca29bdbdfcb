"""Backup set naming: where the table, the image and each increment live."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Union

HASH_SUFFIX = "hash.bin"
IMAGE_SUFFIX = "full.img"
DATA_SUFFIX = "data.bin"
JOURNAL_SUFFIX = "jrnl.json"


@dataclass(frozen=True)
class Increment:
    """File paths of increment ``number``."""

    number: int
    base: Path

    @property
    def data_path(self) -> Path:
        return self.base.with_name(self.base.name + DATA_SUFFIX)

    @property
    def journal_path(self) -> Path:
        return self.base.with_name(self.base.name + JOURNAL_SUFFIX)

    @property
    def hash_path(self) -> Path:
        return self.base.with_name(self.base.name + HASH_SUFFIX)

    @property
    def name(self) -> str:
        return self.base.name


class BackupSet:
    """A backup directory plus filename prefix.

    ``<prefix>hash.bin`` and ``<prefix>full.img`` are the baseline;
    ``<prefix>NNNN-{data.bin,jrnl.json,hash.bin}`` are increments.
    """

    def __init__(self, directory: Union[str, Path], prefix: str = ""):
        self.directory = Path(directory)
        self.prefix = prefix
        self._increment_re = re.compile(
            re.escape(prefix) + r"(\d{4,})-(?:%s|%s|%s)$"
            % (re.escape(DATA_SUFFIX), re.escape(JOURNAL_SUFFIX), re.escape(HASH_SUFFIX))
        )

    @property
    def hash_path(self) -> Path:
        return self.directory / f"{self.prefix}{HASH_SUFFIX}"

    @property
    def image_path(self) -> Path:
        return self.directory / f"{self.prefix}{IMAGE_SUFFIX}"

    def increment(self, number: int) -> Increment:
        return Increment(number, self.directory / f"{self.prefix}{number:04d}-")

    def next_increment(self) -> Increment:
        """Smallest increment number whose journal does not exist yet."""
        number = 0
        while self.increment(number).journal_path.exists():
            number += 1
        return self.increment(number)

    def increments(self) -> List[Increment]:
        """Existing increments in number order."""
        numbers = set()
        if self.directory.is_dir():
            for path in self.directory.iterdir():
                match = self._increment_re.match(path.name)
                if match:
                    numbers.add(int(match.group(1)))
        return [self.increment(n) for n in sorted(numbers)]

    def describe(self) -> Dict:
        """State of the backup set for status output."""
        image = self.image_path
        table = self.hash_path
        return {
            "directory": str(self.directory),
            "prefix": self.prefix,
            "hash_table": str(table) if table.exists() else None,
            "hash_table_bytes": table.stat().st_size if table.exists() else None,
            "full_image": str(image) if image.exists() else None,
            "full_image_bytes": image.stat().st_size if image.exists() else None,
            "increments": [inc.name for inc in self.increments()],
        }
