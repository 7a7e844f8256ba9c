"""Shared fixtures built from the sample models under metadata/."""

from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from scopeforge.auth.types import AuthContext
from scopeforge.compiler import CompileResult, compile_models
from scopeforge.metadata.catalog import Catalog, normalize_models
from scopeforge.metadata.loader import MetadataLoader

REPO_ROOT = Path(__file__).resolve().parents[1]
METADATA_DIR = REPO_ROOT / "metadata"


@pytest.fixture(scope="session")
def sample_declarations():
    loader = MetadataLoader(METADATA_DIR)
    loader.load_all()
    return list(loader.models.values())


@pytest.fixture(scope="session")
def sample_catalog(sample_declarations) -> Catalog:
    catalog, issues = normalize_models(sample_declarations)
    assert issues == []
    return catalog


@pytest.fixture(scope="session")
def sample_result(sample_declarations) -> CompileResult:
    result = compile_models(sample_declarations)
    result.raise_for_issues()
    return result


@pytest.fixture
def auth():
    return AuthContext(
        organization_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        role_ids=[uuid.uuid4()],
        permissions={"Post::read"},
    )
