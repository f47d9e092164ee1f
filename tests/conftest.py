from __future__ import annotations

from pathlib import Path

import pytest

from peptide_directory.catalog import DirectoryDatabase, load_seed


@pytest.fixture()
def root(tmp_path: Path) -> Path:
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    return tmp_path


@pytest.fixture()
def db(root: Path) -> DirectoryDatabase:
    return DirectoryDatabase(root_dir=str(root), db_path=str(root / "directory.sqlite3"))


@pytest.fixture()
def seeded_db(db: DirectoryDatabase) -> DirectoryDatabase:
    load_seed(db)
    return db
