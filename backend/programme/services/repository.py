"""
Baseline persistence.

BaselineRepository is the contract the BaselineStore talks to. Two
implementations are provided:
- InMemoryBaselineRepository: process-local dicts, used by default and in tests
- SqlBaselineRepository: SQLModel tables over an async SQLAlchemy session
  (asyncpg). Every call is bounded by a timeout and database failures surface
  as PersistenceError.
"""

import asyncio
import uuid
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, col, select

from programme.exceptions import PersistenceError, QuotaExceededError
from programme.logging_config import get_logger
from programme.models import Baseline, BaselineTaskSnapshot

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=SQLModel)


class BaselineRepository(Protocol):
    async def save_baseline(self, baseline: Baseline, max_baselines: Optional[int] = None) -> Baseline:
        """Insert a baseline header, refusing it when the project already holds ``max_baselines``."""
        ...

    async def save_baseline_snapshots(
        self, baseline_id: uuid.UUID, snapshots: list[BaselineTaskSnapshot]
    ) -> None: ...

    async def load_baselines_for_project(self, project_id: str) -> list[Baseline]: ...

    async def load_snapshots_for_baseline(self, baseline_id: uuid.UUID) -> list[BaselineTaskSnapshot]: ...

    async def load_baseline(self, baseline_id: uuid.UUID) -> Optional[Baseline]: ...

    async def set_baseline_active_flag(self, project_id: str, baseline_id: uuid.UUID) -> None:
        """Activate one baseline and deactivate the rest of the project in one step."""
        ...

    async def delete_baseline(self, baseline_id: uuid.UUID) -> bool:
        """Delete a baseline with its snapshots. Returns False if it did not exist."""
        ...


def _detached(obj: M) -> M:
    return type(obj)(**obj.model_dump())


def _check_capacity(existing: int, max_baselines: Optional[int]) -> None:
    if max_baselines is not None and existing >= max_baselines:
        raise QuotaExceededError(f"Maximum {max_baselines} baseline(s) per project reached")


class InMemoryBaselineRepository:
    """Dict-backed repository. Returns copies so callers cannot mutate stored rows."""

    def __init__(self) -> None:
        self._baselines: dict[uuid.UUID, Baseline] = {}
        self._snapshots: dict[uuid.UUID, list[BaselineTaskSnapshot]] = {}

    async def save_baseline(self, baseline: Baseline, max_baselines: Optional[int] = None) -> Baseline:
        _check_capacity(
            sum(1 for b in self._baselines.values() if b.project_id == baseline.project_id),
            max_baselines,
        )
        self._baselines[baseline.id] = _detached(baseline)
        self._snapshots.setdefault(baseline.id, [])
        return _detached(baseline)

    async def save_baseline_snapshots(
        self, baseline_id: uuid.UUID, snapshots: list[BaselineTaskSnapshot]
    ) -> None:
        if baseline_id not in self._baselines:
            raise PersistenceError("save_baseline_snapshots", f"baseline {baseline_id} does not exist", retryable=False)
        self._snapshots[baseline_id].extend(_detached(s) for s in snapshots)

    async def load_baselines_for_project(self, project_id: str) -> list[Baseline]:
        rows = [b for b in self._baselines.values() if b.project_id == project_id]
        return [_detached(b) for b in sorted(rows, key=lambda b: b.created_at)]

    async def load_snapshots_for_baseline(self, baseline_id: uuid.UUID) -> list[BaselineTaskSnapshot]:
        return [_detached(s) for s in self._snapshots.get(baseline_id, [])]

    async def load_baseline(self, baseline_id: uuid.UUID) -> Optional[Baseline]:
        baseline = self._baselines.get(baseline_id)
        return _detached(baseline) if baseline else None

    async def set_baseline_active_flag(self, project_id: str, baseline_id: uuid.UUID) -> None:
        for baseline in self._baselines.values():
            if baseline.project_id == project_id:
                baseline.is_active = baseline.id == baseline_id

    async def delete_baseline(self, baseline_id: uuid.UUID) -> bool:
        self._snapshots.pop(baseline_id, None)
        return self._baselines.pop(baseline_id, None) is not None


class SqlBaselineRepository:
    """SQLModel-backed repository on an async session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 10.0,
    ):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def in_session() -> T:
            async with self.session_factory() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except Exception:
                    await session.rollback()
                    raise

        try:
            return await asyncio.wait_for(in_session(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"{operation} timed out after {self.timeout_seconds}s")
            raise PersistenceError(operation, f"timed out after {self.timeout_seconds}s")
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise PersistenceError(operation, str(e))

    async def save_baseline(self, baseline: Baseline, max_baselines: Optional[int] = None) -> Baseline:
        async def work(session: AsyncSession) -> Baseline:
            if max_baselines is not None:
                # Transaction-scoped lock: API and worker processes count and insert one at a time
                await session.execute(select(func.pg_advisory_xact_lock(func.hashtext(baseline.project_id))))
                existing = await session.scalar(
                    select(func.count())
                    .select_from(Baseline)
                    .where(col(Baseline.project_id) == baseline.project_id)
                )
                _check_capacity(existing or 0, max_baselines)
            session.add(baseline)
            await session.flush()
            await session.refresh(baseline)
            return baseline

        return await self._run("save_baseline", work)

    async def save_baseline_snapshots(
        self, baseline_id: uuid.UUID, snapshots: list[BaselineTaskSnapshot]
    ) -> None:
        async def work(session: AsyncSession) -> None:
            for snapshot in snapshots:
                snapshot.baseline_id = baseline_id
            session.add_all(snapshots)

        await self._run("save_baseline_snapshots", work)

    async def load_baselines_for_project(self, project_id: str) -> list[Baseline]:
        async def work(session: AsyncSession) -> list[Baseline]:
            result = await session.execute(
                select(Baseline)
                .where(Baseline.project_id == project_id)
                .order_by(col(Baseline.created_at))
            )
            return list(result.scalars().all())

        return await self._run("load_baselines_for_project", work)

    async def load_snapshots_for_baseline(self, baseline_id: uuid.UUID) -> list[BaselineTaskSnapshot]:
        async def work(session: AsyncSession) -> list[BaselineTaskSnapshot]:
            result = await session.execute(
                select(BaselineTaskSnapshot).where(BaselineTaskSnapshot.baseline_id == baseline_id)
            )
            return list(result.scalars().all())

        return await self._run("load_snapshots_for_baseline", work)

    async def load_baseline(self, baseline_id: uuid.UUID) -> Optional[Baseline]:
        async def work(session: AsyncSession) -> Optional[Baseline]:
            return await session.get(Baseline, baseline_id)

        return await self._run("load_baseline", work)

    async def set_baseline_active_flag(self, project_id: str, baseline_id: uuid.UUID) -> None:
        async def work(session: AsyncSession) -> None:
            # Single UPDATE: no window with zero or two active baselines
            await session.execute(
                update(Baseline)
                .where(col(Baseline.project_id) == project_id)
                .values(is_active=(col(Baseline.id) == baseline_id))
            )

        await self._run("set_baseline_active_flag", work)

    async def delete_baseline(self, baseline_id: uuid.UUID) -> bool:
        async def work(session: AsyncSession) -> bool:
            await session.execute(
                delete(BaselineTaskSnapshot).where(col(BaselineTaskSnapshot.baseline_id) == baseline_id)
            )
            result = await session.execute(delete(Baseline).where(col(Baseline.id) == baseline_id))
            return result.rowcount > 0

        return await self._run("delete_baseline", work)
