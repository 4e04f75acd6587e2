"""Shared test fixtures for codecache."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from codecache.core.code_cache import CodeCache
from codecache.core.instrumentor import PrepareError, PrepareErrorKind
from codecache.core.sqlite_storage import SqliteStorage
from codecache.core.storage import InMemoryStorage
from codecache.models.code import PrefabModule
from codecache.models.schedule import Schedule


class CountingInstrumentor:
    """Fake instrumentor: tags code with the schedule version and counts calls.

    Versions listed in ``failing_versions`` raise ``PrepareError``.
    """

    def __init__(self, failing_versions: set[int] | None = None) -> None:
        self.calls: list[tuple[bytes, int]] = []
        self.failing_versions = failing_versions or set()

    def instrument(self, original_code: bytes, schedule: Schedule) -> bytes:
        self.calls.append((original_code, schedule.version))
        if schedule.version in self.failing_versions:
            raise PrepareError(
                "gas limit below minimum", PrepareErrorKind.LIMIT_EXCEEDED
            )
        return instrumented_under(original_code, schedule.version)


def instrumented_under(original_code: bytes, version: int) -> bytes:
    """The artifact ``CountingInstrumentor`` derives for *version*."""
    return b"v%d:" % version + original_code


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    """Provide a fresh in-memory storage backend."""
    return InMemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path: Path) -> Iterator[SqliteStorage]:
    """Provide a fresh SqliteStorage backed by a temp database."""
    storage = SqliteStorage(tmp_path / "code.db")
    yield storage
    storage.close()


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path: Path):
    """Run the test against both storage backends."""
    if request.param == "memory":
        yield InMemoryStorage()
        return
    backend = SqliteStorage(tmp_path / "code.db")
    yield backend
    backend.close()


@pytest.fixture
def make_instrumentor() -> Callable[..., CountingInstrumentor]:
    """Factory fixture: a counting instrumentor failing on the given versions."""
    return CountingInstrumentor


@pytest.fixture
def artifact_for() -> Callable[[bytes, int], bytes]:
    """The artifact the counting instrumentor derives for code at a version."""
    return instrumented_under


@pytest.fixture
def instrumentor() -> CountingInstrumentor:
    """Provide a call-counting fake instrumentor."""
    return CountingInstrumentor()


@pytest.fixture
def cache(storage, instrumentor: CountingInstrumentor) -> CodeCache:
    """Provide a CodeCache over each backend with the counting instrumentor."""
    return CodeCache(storage, instrumentor)


@pytest.fixture
def schedule_v1() -> Schedule:
    return Schedule(version=1, instruction_weights={"i64.add": 3})


@pytest.fixture
def schedule_v2() -> Schedule:
    return Schedule(version=2, instruction_weights={"i64.add": 4})


@pytest.fixture
def original_code() -> bytes:
    return b"\x00asm\x01\x00\x00\x00(module (func $call))"


@pytest.fixture
def make_module(original_code: bytes) -> Callable[..., PrefabModule]:
    """Factory fixture: a first-time registration handle for *code* at *version*."""

    def _factory(
        code: bytes = original_code,
        version: int = 1,
        *,
        with_original: bool = True,
    ) -> PrefabModule:
        module = PrefabModule.from_original(
            code, instrumented_under(code, version), version
        )
        if not with_original:
            module = module.model_copy(update={"original_code": None})
        return module

    return _factory
