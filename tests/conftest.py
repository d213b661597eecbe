"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides the store fixtures shared by the store, pipeline and
optimizer tests.
"""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local devmind package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of devmind modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("devmind"):
        del sys.modules[module_name]

from devmind.config.models import DevMindConfig  # noqa: E402
from devmind.store import MemoryStore, Project, Session  # noqa: E402

T0 = 1_700_000_000.0


class FakeClock:
    """Deterministic epoch-seconds clock."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> DevMindConfig:
    return DevMindConfig()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock, config: DevMindConfig) -> Generator[MemoryStore, None, None]:
    """Store on a temporary file with a fake clock and no background worker."""
    memory = MemoryStore(tmp_path / "memory.db", config, clock, start_maintenance=False)
    yield memory
    memory.close()


@pytest.fixture
def project(store: MemoryStore) -> Project:
    return store.get_or_create_project("/work/app")


@pytest.fixture
def session(store: MemoryStore, project: Project) -> Session:
    return store.create_session(project.id, "debugging", tool_used="cli")
