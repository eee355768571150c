"""Data models for the cofounder task queue and dispatch system."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

MIN_PRIORITY = 0
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5

PROJECTS = ("infinite_realms", "infrastructure", "sanctuary", "other")
FOUNDER_STATUSES = ("active", "blocked", "paused")
DISPATCH_STATUSES = ("pending", "running", "completed", "failed")
ENERGY_LEVELS = ("high", "medium", "low")
NOTE_TYPES = ("progress", "attempt", "blocker", "learning")
ISSUE_TYPES = ("bug", "feature")
ISSUE_STATUSES = ("open", "in_progress", "resolved", "wontfix")


class Agent(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"
    QWEN = "qwen"
    CLINE = "cline"


class Target(str, Enum):
    HETZNER = "hetzner"
    MAC = "mac"
    COLD_STORAGE = "cold_storage"


LOCAL_TARGET = Target.HETZNER


@dataclass
class Task:
    id: int
    task: str
    context: str | None = None
    priority: int = DEFAULT_PRIORITY
    estimated_minutes: int | None = None
    project: str | None = None
    added_at: datetime | None = None
    added_by: str | None = None
    due_date: datetime | None = None
    tags: list[str] = field(default_factory=list)
    blocked_by: list[int] = field(default_factory=list)
    notion_page_id: str | None = None


@dataclass
class WorkState:
    id: int = 1
    goal: str = ""
    goal_metric: str = ""
    current_revenue: str | None = None
    subscribers: int = 0
    current_task: str | None = None
    current_task_context: str | None = None
    current_task_id: int | None = None
    current_task_assigned_at: datetime | None = None
    current_task_snapshot: dict | None = None
    streak_days: int = 0
    last_checkin: datetime | None = None
    last_completion: datetime | None = None
    last_progress_update: datetime | None = None
    status: str = "active"

    @property
    def is_idle(self) -> bool:
        return self.current_task_id is None and self.current_task is None


@dataclass
class CompletedTask:
    id: int | None = None
    task: str = ""
    context: str | None = None
    completed_at: datetime | None = None
    time_taken_minutes: int | None = None
    notes: str | None = None
    project: str | None = None


@dataclass
class Blocker:
    id: int | None = None
    blocker: str = ""
    context: str | None = None
    task_id: int | None = None
    identified_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution: str | None = None


@dataclass
class DispatchJob:
    id: int | None = None
    agent: str = Agent.CLAUDE.value
    target: str = LOCAL_TARGET.value
    task: str = ""
    repo_path: str | None = None
    track_as_task: bool = False
    cofounder_task_id: int | None = None
    status: str = "pending"
    result: str | None = None
    error_message: str | None = None
    slack_message_ts: str | None = None
    slack_channel_id: str | None = None
    slack_thread_ts: str | None = None
    dispatched_by: str | None = None
    parent_dispatch_id: int | None = None
    depth: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


@dataclass
class WorkSession:
    id: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    planned_duration_minutes: int | None = None
    tasks_completed: int = 0
    notes: str | None = None
    learnings: str | None = None
    energy_level: str | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


@dataclass
class TaskNote:
    id: int | None = None
    task_id: int = 0
    task_completed: bool = False
    note: str = ""
    note_type: str = "progress"
    created_at: datetime | None = None
    created_by: str | None = None


@dataclass
class DailyLog:
    id: int | None = None
    date: str = ""
    tasks_completed: int = 0
    tasks_assigned: int = 0
    checkins: int = 0
    notes: str | None = None
    mood: str | None = None


@dataclass
class Decision:
    id: int | None = None
    decision: str = ""
    rationale: str = ""
    alternatives: str | None = None
    project: str | None = None
    impact: str | None = None
    decided_at: datetime | None = None
    decided_by: str | None = None


@dataclass
class Learning:
    id: int | None = None
    content: str = ""
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    source: str | None = None
    created_at: datetime | None = None
    created_by: str | None = None


@dataclass
class Issue:
    id: int | None = None
    type: str = "bug"
    title: str = ""
    description: str = ""
    reported_by: str = ""
    status: str = "open"
    priority: int = 5
    resolution: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
