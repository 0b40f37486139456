"""
Sample programme: a small site-establishment schedule used by the seed
script, the demo API and the tests.
"""

import random
from datetime import date, timedelta

from programme.domain.task import DependencyType, TaskType
from programme.services.graph import DependencyEngine
from programme.services.task_store import TaskStore


def build_site_establishment(store: TaskStore) -> dict[str, str]:
    """
    Fill ``store`` with the site-establishment programme.

    Returns the task ids by short name (project, phase-1..3, fencing,
    demolition, excavate, roads, ready).
    """
    ids: dict[str, str] = {}
    ids["project"] = store.create_task(
        "Site Establishment Project", date(2025, 1, 6), date(2025, 4, 4), task_type=TaskType.SUMMARY,
    )
    ids["phase-1"] = store.create_task(
        "Site Preparation", date(2025, 1, 6), date(2025, 2, 11),
        parent_id=ids["project"], task_type=TaskType.SUMMARY,
    )
    ids["phase-2"] = store.create_task(
        "Foundation Work", date(2025, 2, 12), date(2025, 2, 25),
        parent_id=ids["project"], task_type=TaskType.SUMMARY,
    )
    ids["phase-3"] = store.create_task(
        "Infrastructure", date(2025, 2, 25), date(2025, 4, 4),
        parent_id=ids["project"], task_type=TaskType.SUMMARY,
    )
    ids["fencing"] = store.create_task(
        "Fencing", date(2025, 1, 6), date(2025, 1, 8),
        parent_id=ids["phase-1"], percent_complete=100, status="completed", cost=4500.0,
    )
    ids["demolition"] = store.create_task(
        "Demolition", date(2025, 1, 10), date(2025, 2, 11),
        parent_id=ids["phase-1"], percent_complete=60, status="in-progress", cost=28000.0,
    )
    ids["excavate"] = store.create_task(
        "Excavate", date(2025, 2, 12), date(2025, 2, 25), parent_id=ids["phase-2"], cost=36000.0,
    )
    ids["roads"] = store.create_task(
        "Temporary Roads", date(2025, 2, 25), date(2025, 4, 4), parent_id=ids["phase-3"], cost=52000.0,
    )
    ids["ready"] = store.create_task(
        "Site Ready for Construction", date(2025, 4, 4), date(2025, 4, 4),
        parent_id=ids["project"], task_type=TaskType.MILESTONE,
    )

    engine = DependencyEngine(store)
    engine.link(ids["fencing"], ids["demolition"], DependencyType.FS, 1)
    engine.link(ids["demolition"], ids["excavate"], DependencyType.FS, 0)
    engine.link(ids["fencing"], ids["excavate"], DependencyType.SS, -2)
    engine.link(ids["excavate"], ids["roads"], DependencyType.FS, 0)
    engine.link(ids["demolition"], ids["roads"], DependencyType.FF, 3)
    engine.link(ids["roads"], ids["ready"], DependencyType.FS, 0)
    return ids


def build_random_programme(
    store: TaskStore,
    num_tasks: int = 500,
    start: date = date(2025, 1, 1),
    seed: int | None = None,
) -> int:
    """
    Generate a realistic DAG in "waves": each wave is a summary row whose
    tasks depend on 1-3 tasks of the previous few waves. 10% are milestones.

    Returns the number of links created.
    """
    rng = random.Random(seed)
    engine = DependencyEngine(store)
    num_waves = max(10, num_tasks // 50)
    per_wave = max(1, num_tasks // num_waves)
    waves: list[list[str]] = []
    created = links = 0

    for wave in range(num_waves):
        size = per_wave if wave < num_waves - 1 else max(0, num_tasks - created)
        if size == 0:
            break
        summary = store.create_task(
            f"Wave {wave:02d}", start, start + timedelta(days=1), task_type=TaskType.SUMMARY,
        )
        wave_ids = []
        for i in range(size):
            if rng.random() < 0.1:
                task_id = store.create_task(
                    f"Milestone W{wave:02d}-{i:03d}", start, start,
                    parent_id=summary, task_type=TaskType.MILESTONE,
                )
            else:
                task_id = store.create_task(
                    f"Task W{wave:02d}-{i:03d}", start, start + timedelta(days=rng.randint(1, 10)),
                    parent_id=summary,
                )
            wave_ids.append(task_id)
            created += 1

        if waves:
            reachable = waves[max(0, wave - 3):]
            for task_id in wave_ids:
                for _ in range(rng.randint(1, 3)):
                    predecessor = rng.choice(rng.choice(reachable))
                    if store.get_task(task_id).predecessor(predecessor) is None:
                        engine.link(predecessor, task_id)
                        links += 1
        waves.append(wave_ids)
    return links
