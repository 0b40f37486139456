"""
Export/import of a programme as JSON, XML or CSV.

JSON is the full-fidelity format (every task field, optional baselines and
project metadata). XML and CSV carry the same task fields in their own shape.

Every import goes through the same TaskDocument pydantic model, so all three
formats report problems the same way: the whole payload is checked, every
problem is collected with its location, and nothing is installed unless the
task list is valid, structurally sound and acyclic.
"""

import csv
import io
import json
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Annotated, Any, Iterable, Optional
from xml.sax.saxutils import escape

from pydantic import BaseModel, BeforeValidator, Field
from pydantic import ValidationError as PydanticValidationError

from programme.domain.task import (
    ConstraintType,
    CustomValue,
    Dependency,
    DependencyType,
    Priority,
    Task,
    TaskStatus,
    TaskType,
)
from programme.exceptions import ImportFormatError, ValidationError
from programme.logging_config import get_logger
from programme.models import Baseline, BaselineTaskSnapshot
from programme.services.graph import DependencyEngine
from programme.services.task_store import TaskStore

logger = get_logger(__name__)

FORMAT_VERSION = "1.0"
FORMATS = ("json", "xml", "csv")

MEDIA_TYPES = {
    "json": "application/json",
    "xml": "application/xml",
    "csv": "text/csv",
}


def parse_iso_date(value: Any) -> Any:
    """Accept ISO dates and ISO datetimes (date part kept)."""
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, str):
        return value
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"'{value}' is not an ISO-8601 date")


IsoDate = Annotated[date, BeforeValidator(parse_iso_date)]


# =============================================================================
# Document models
# =============================================================================

class DependencyDocument(BaseModel):
    task_id: str
    type: DependencyType = DependencyType.FS
    lag: int = 0


class TaskDocument(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    start: IsoDate
    end: IsoDate
    percent_complete: float = Field(default=0.0, ge=0, le=100)
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: Optional[Priority] = None
    task_type: TaskType = TaskType.NORMAL
    parent_id: Optional[str] = None
    children: list[str] = []
    level: int = 0
    position: int = 0
    is_expanded: bool = True
    constraint_type: ConstraintType = ConstraintType.AS_SOON_AS_POSSIBLE
    constraint_date: Optional[IsoDate] = None
    predecessors: list[DependencyDocument] = []
    successors: list[DependencyDocument] = []
    notes: Optional[str] = None
    assigned_to: Optional[str] = None
    resources: list[str] = []
    cost: float = 0.0
    custom_fields: dict[str, CustomValue] = {}
    is_critical: bool = False
    total_float: Optional[int] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskDocument":
        return cls.model_validate(asdict(task))

    def to_task(self) -> Task:
        values = self.model_dump(exclude={"predecessors", "successors"})
        return Task(
            **values,
            predecessors=[Dependency(d.task_id, d.type, d.lag) for d in self.predecessors],
            successors=[Dependency(d.task_id, d.type, d.lag) for d in self.successors],
        )


class SnapshotDocument(BaseModel):
    task_id: str
    name: str
    baseline_start: IsoDate
    baseline_end: IsoDate
    percent_complete: float = Field(default=0.0, ge=0, le=100)
    is_milestone: bool = False
    parent_id: Optional[str] = None


class BaselineDocument(BaseModel):
    id: str
    name: str
    created_at: datetime
    created_by: str = "system"
    is_active: bool = False
    tag: Optional[str] = None
    tasks: list[SnapshotDocument] = []


class ProjectMetadata(BaseModel):
    total_tasks: int
    completed_tasks: int
    project_start: Optional[date] = None
    project_end: Optional[date] = None
    total_duration: int = 0
    total_cost: float = 0.0


class ProjectDocument(BaseModel):
    version: str = FORMAT_VERSION
    exported_at: datetime = Field(default_factory=datetime.utcnow)
    project_name: str = "Programme"
    project_description: Optional[str] = None
    tasks: list[TaskDocument]
    metadata: Optional[ProjectMetadata] = None
    baselines: list[BaselineDocument] = []


@dataclass
class ImportedProject:
    """A validated import, ready to be installed."""
    store: TaskStore
    project_name: Optional[str] = None
    project_description: Optional[str] = None
    baselines: list[BaselineDocument] = field(default_factory=list)


def build_metadata(tasks: list[Task]) -> ProjectMetadata:
    metadata = ProjectMetadata(
        total_tasks=len(tasks),
        completed_tasks=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
        total_cost=sum(t.cost for t in tasks),
    )
    if tasks:
        metadata.project_start = min(t.start for t in tasks)
        metadata.project_end = max(t.end for t in tasks)
        metadata.total_duration = (metadata.project_end - metadata.project_start).days
    return metadata


def _problem(loc: list[Any], msg: str, type_: str = "value_error") -> dict[str, Any]:
    return {"loc": [str(part) for part in loc], "msg": msg, "type": type_}


def _pydantic_problems(error: PydanticValidationError, prefix: list[Any]) -> list[dict[str, Any]]:
    return [_problem(prefix + list(err["loc"]), err["msg"], err["type"]) for err in error.errors()]


def _validate_tasks(
    raw_tasks: list[tuple[list[Any], dict[str, Any]]],
    problems: list[dict[str, Any]],
) -> list[Task]:
    tasks = []
    for loc, raw in raw_tasks:
        try:
            tasks.append(TaskDocument.model_validate(raw).to_task())
        except PydanticValidationError as e:
            problems.extend(_pydantic_problems(e, loc))
    return tasks


def _build_store(fmt: str, tasks: list[Task], problems: list[dict[str, Any]]) -> TaskStore:
    if problems:
        raise ImportFormatError(fmt, problems)
    try:
        store = TaskStore.from_tasks(tasks)
    except ValidationError as e:
        raise ImportFormatError(fmt, e.details or [_problem([], e.message)])

    cycles = DependencyEngine(store).validate_graph()
    if cycles:
        raise ImportFormatError(fmt, [
            _problem(["tasks"] + violation.task_ids, violation.message, "cycle_error")
            for violation in cycles
        ])
    return store


# =============================================================================
# JSON
# =============================================================================

def export_json(
    tasks: Iterable[Task],
    project_name: str = "Programme",
    project_description: Optional[str] = None,
    baselines: Optional[list[tuple[Baseline, list[BaselineTaskSnapshot]]]] = None,
) -> str:
    tasks = list(tasks)
    document = ProjectDocument(
        project_name=project_name,
        project_description=project_description,
        tasks=[TaskDocument.from_task(task) for task in tasks],
        metadata=build_metadata(tasks),
        baselines=[
            BaselineDocument(
                id=str(baseline.id),
                name=baseline.name,
                created_at=baseline.created_at,
                created_by=baseline.created_by,
                is_active=baseline.is_active,
                tag=baseline.tag,
                tasks=[
                    SnapshotDocument(
                        task_id=s.task_id,
                        name=s.name,
                        baseline_start=s.baseline_start,
                        baseline_end=s.baseline_end,
                        percent_complete=s.percent_complete,
                        is_milestone=s.is_milestone,
                        parent_id=s.parent_id,
                    )
                    for s in snapshots
                ],
            )
            for baseline, snapshots in (baselines or [])
        ],
    )
    return document.model_dump_json(indent=2)


def import_json(text: str) -> ImportedProject:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError("json", [
            _problem(["line", e.lineno, "column", e.colno], e.msg, "json_invalid"),
        ])
    try:
        document = ProjectDocument.model_validate(payload)
    except PydanticValidationError as e:
        raise ImportFormatError("json", _pydantic_problems(e, []))

    store = _build_store("json", [doc.to_task() for doc in document.tasks], [])
    return ImportedProject(
        store=store,
        project_name=document.project_name,
        project_description=document.project_description,
        baselines=document.baselines,
    )


# =============================================================================
# XML
# =============================================================================

_XML_ENTITIES = {'"': "&quot;", "'": "&#39;"}


def escape_xml(value: Any) -> str:
    return escape(str(value), _XML_ENTITIES)


def _custom_type(value: CustomValue) -> str:
    if value is None:
        return "null"
    return type(value).__name__


def _custom_value(type_name: str, text: str) -> CustomValue:
    if type_name == "null":
        return None
    if type_name == "bool":
        return text.strip().lower() == "true"
    if type_name == "int":
        return int(text)
    if type_name == "float":
        return float(text)
    return text


def export_xml(
    tasks: Iterable[Task],
    project_name: str = "Programme",
    project_description: Optional[str] = None,
) -> str:
    tasks = list(tasks)
    metadata = build_metadata(tasks)
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<project version="{FORMAT_VERSION}" exportedAt="{datetime.utcnow().isoformat()}">',
        "  <metadata>",
        f"    <name>{escape_xml(project_name)}</name>",
    ]
    if project_description:
        lines.append(f"    <description>{escape_xml(project_description)}</description>")
    lines += [
        f"    <totalTasks>{metadata.total_tasks}</totalTasks>",
        f"    <totalDuration>{metadata.total_duration}</totalDuration>",
        f"    <totalCost>{metadata.total_cost}</totalCost>",
    ]
    if metadata.project_start:
        lines.append(f"    <projectStartDate>{metadata.project_start.isoformat()}</projectStartDate>")
        lines.append(f"    <projectEndDate>{metadata.project_end.isoformat()}</projectEndDate>")
    lines += ["    <exportFormat>xml</exportFormat>", "  </metadata>", "  <tasks>"]

    for task in tasks:
        lines.append(f'    <task id="{escape_xml(task.id)}">')
        scalars = [
            ("name", task.name),
            ("startDate", task.start.isoformat()),
            ("endDate", task.end.isoformat()),
            ("duration", task.duration),
            ("percentComplete", task.percent_complete),
            ("status", task.status.value),
            ("level", task.level),
            ("position", task.position),
            ("isExpanded", str(task.is_expanded).lower()),
            ("parentId", task.parent_id),
            ("taskType", task.task_type.value),
            ("priority", task.priority.value if task.priority else None),
            ("assignedTo", task.assigned_to),
            ("cost", task.cost),
            ("notes", task.notes),
            ("isCritical", str(task.is_critical).lower()),
            ("totalFloat", task.total_float),
        ]
        for tag, value in scalars:
            if value is not None:
                lines.append(f"      <{tag}>{escape_xml(value)}</{tag}>")
        constraint_date = task.constraint_date.isoformat() if task.constraint_date else ""
        lines.append(f'      <constraint type="{task.constraint_type.value}">{constraint_date}</constraint>')
        if task.children:
            lines.append("      <children>" + "".join(
                f"<child>{escape_xml(child)}</child>" for child in task.children
            ) + "</children>")
        for group, tag, deps in (("predecessors", "predecessor", task.predecessors),
                                 ("successors", "successor", task.successors)):
            if deps:
                lines.append(f"      <{group}>" + "".join(
                    f'<{tag} type="{dep.type.value}" lag="{dep.lag}">{escape_xml(dep.task_id)}</{tag}>'
                    for dep in deps
                ) + f"</{group}>")
        if task.resources:
            lines.append("      <resources>" + "".join(
                f"<resource>{escape_xml(resource)}</resource>" for resource in task.resources
            ) + "</resources>")
        if task.custom_fields:
            lines.append("      <customFields>" + "".join(
                f'<field name="{escape_xml(name)}" type="{_custom_type(value)}">'
                f'{escape_xml(value) if value is not None else ""}</field>'
                for name, value in task.custom_fields.items()
            ) + "</customFields>")
        lines.append("    </task>")

    lines += ["  </tasks>", "</project>"]
    return "\n".join(lines) + "\n"


# XML element -> TaskDocument field
_XML_SCALARS = {
    "name": "name",
    "startDate": "start",
    "endDate": "end",
    "percentComplete": "percent_complete",
    "status": "status",
    "position": "position",
    "isExpanded": "is_expanded",
    "parentId": "parent_id",
    "taskType": "task_type",
    "priority": "priority",
    "assignedTo": "assigned_to",
    "cost": "cost",
    "notes": "notes",
    "isCritical": "is_critical",
    "totalFloat": "total_float",
}


def _xml_dependencies(element: Optional[ET.Element]) -> list[dict[str, Any]]:
    if element is None:
        return []
    return [
        {"task_id": (dep.text or "").strip(), "type": dep.get("type", "FS"), "lag": dep.get("lag", "0")}
        for dep in element
    ]


def import_xml(text: str) -> ImportedProject:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        line, column = e.position
        raise ImportFormatError("xml", [
            _problem(["line", line, "column", column], str(e), "xml_invalid"),
        ])

    problems: list[dict[str, Any]] = []
    if root.tag != "project":
        problems.append(_problem(["project"], f"expected <project> root element, got <{root.tag}>"))
    tasks_element = root.find("tasks")
    if tasks_element is None:
        problems.append(_problem(["project", "tasks"], "missing <tasks> element", "missing"))
        raise ImportFormatError("xml", problems)

    raw_tasks = []
    for index, element in enumerate(tasks_element.findall("task")):
        loc: list[Any] = ["task", element.get("id") or index]
        raw: dict[str, Any] = {"id": element.get("id")}
        for tag, field_name in _XML_SCALARS.items():
            child = element.find(tag)
            if child is not None and child.text is not None:
                raw[field_name] = child.text.strip()

        constraint = element.find("constraint")
        if constraint is not None:
            raw["constraint_type"] = constraint.get("type")
            if constraint.text and constraint.text.strip():
                raw["constraint_date"] = constraint.text.strip()

        raw["predecessors"] = _xml_dependencies(element.find("predecessors"))
        raw["successors"] = _xml_dependencies(element.find("successors"))
        resources = element.find("resources")
        raw["resources"] = [(r.text or "").strip() for r in resources] if resources is not None else []

        custom = {}
        custom_element = element.find("customFields")
        for item in custom_element if custom_element is not None else []:
            name = item.get("name") or ""
            try:
                custom[name] = _custom_value(item.get("type", "str"), item.text or "")
            except ValueError as e:
                problems.append(_problem(loc + ["custom_fields", name], str(e)))
        raw["custom_fields"] = custom
        raw_tasks.append((loc, raw))

    tasks = _validate_tasks(raw_tasks, problems)
    store = _build_store("xml", tasks, problems)

    metadata = root.find("metadata")
    return ImportedProject(
        store=store,
        project_name=metadata.findtext("name") if metadata is not None else None,
        project_description=metadata.findtext("description") if metadata is not None else None,
    )


# =============================================================================
# CSV
# =============================================================================

CSV_HEADERS = [
    "ID",
    "Name",
    "Start Date",
    "End Date",
    "Duration",
    "Percent Complete",
    "Status",
    "Level",
    "Parent ID",
    "Position",
    "Task Type",
    "Priority",
    "Constraint Type",
    "Constraint Date",
    "Assigned To",
    "Cost",
    "Predecessors",
    "Successors",
    "Resources",
    "Notes",
    "Custom Fields",
]

# CSV column -> TaskDocument field (Duration and Level are derived)
_CSV_COLUMNS = {
    "ID": "id",
    "Name": "name",
    "Start Date": "start",
    "End Date": "end",
    "Percent Complete": "percent_complete",
    "Status": "status",
    "Parent ID": "parent_id",
    "Position": "position",
    "Task Type": "task_type",
    "Priority": "priority",
    "Constraint Type": "constraint_type",
    "Constraint Date": "constraint_date",
    "Assigned To": "assigned_to",
    "Cost": "cost",
    "Notes": "notes",
}

_REQUIRED_COLUMNS = {"ID", "Name", "Start Date", "End Date"}


def _join_dependencies(deps: list[Dependency]) -> str:
    return ";".join(f"{dep.task_id}:{dep.type.value}:{dep.lag}" for dep in deps)


def _split_dependencies(cell: str) -> list[dict[str, Any]]:
    deps = []
    for entry in filter(None, (part.strip() for part in cell.split(";"))):
        deps.append(dict(zip(("task_id", "type", "lag"), entry.rsplit(":", 2))))
    return deps


def export_csv(tasks: Iterable[Task]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for task in tasks:
        writer.writerow([
            task.id,
            task.name,
            task.start.isoformat(),
            task.end.isoformat(),
            task.duration,
            task.percent_complete,
            task.status.value,
            task.level,
            task.parent_id or "",
            task.position,
            task.task_type.value,
            task.priority.value if task.priority else "",
            task.constraint_type.value,
            task.constraint_date.isoformat() if task.constraint_date else "",
            task.assigned_to or "",
            task.cost,
            _join_dependencies(task.predecessors),
            _join_dependencies(task.successors),
            ";".join(task.resources),
            task.notes or "",
            json.dumps(task.custom_fields) if task.custom_fields else "",
        ])
    return buffer.getvalue()


def import_csv(text: str) -> ImportedProject:
    reader = csv.DictReader(io.StringIO(text))
    missing = _REQUIRED_COLUMNS - set(reader.fieldnames or [])
    if missing:
        raise ImportFormatError("csv", [
            _problem(["line", 1, column], "missing required column", "missing")
            for column in sorted(missing)
        ])

    problems: list[dict[str, Any]] = []
    raw_tasks = []
    try:
        for row in reader:
            loc: list[Any] = ["line", reader.line_num]
            raw: dict[str, Any] = {}
            for column, field_name in _CSV_COLUMNS.items():
                value = (row.get(column) or "").strip()
                if value:
                    raw[field_name] = value
            raw["predecessors"] = _split_dependencies(row.get("Predecessors") or "")
            raw["successors"] = _split_dependencies(row.get("Successors") or "")
            raw["resources"] = [r.strip() for r in (row.get("Resources") or "").split(";") if r.strip()]
            custom = (row.get("Custom Fields") or "").strip()
            if custom:
                try:
                    raw["custom_fields"] = json.loads(custom)
                except json.JSONDecodeError as e:
                    problems.append(_problem(loc + ["Custom Fields"], f"invalid JSON object: {e.msg}"))
            raw_tasks.append((loc, raw))
    except csv.Error as e:
        problems.append(_problem(["line", reader.line_num], str(e), "csv_invalid"))

    tasks = _validate_tasks(raw_tasks, problems)
    return ImportedProject(store=_build_store("csv", tasks, problems))


# =============================================================================
# Dispatch
# =============================================================================

def export_project(
    fmt: str,
    tasks: Iterable[Task],
    project_name: str = "Programme",
    project_description: Optional[str] = None,
    baselines: Optional[list[tuple[Baseline, list[BaselineTaskSnapshot]]]] = None,
) -> str:
    if fmt == "json":
        return export_json(tasks, project_name, project_description, baselines)
    if fmt == "xml":
        return export_xml(tasks, project_name, project_description)
    if fmt == "csv":
        return export_csv(tasks)
    raise ValidationError(f"Unsupported export format: {fmt} (expected one of {', '.join(FORMATS)})")


def import_project(fmt: str, text: str) -> ImportedProject:
    importers = {"json": import_json, "xml": import_xml, "csv": import_csv}
    importer = importers.get(fmt)
    if importer is None:
        raise ValidationError(f"Unsupported import format: {fmt} (expected one of {', '.join(FORMATS)})")
    imported = importer(text)
    logger.info(f"Imported {len(imported.store)} task(s) from {fmt.upper()}")
    return imported
