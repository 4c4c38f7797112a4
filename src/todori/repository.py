"""TaskRepository: the task collection on disk.

Owns ``<root>/.todori/tasks.yaml``. Callers only ever get ``Task`` lists back;
the raw document never leaves this module.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import yaml

from todori import log
from todori.config import Config
from todori.errors import ValidationError
from todori.store import AtomicFileStore
from todori.tasks.io import dump_task_file, load_yaml, task_file_from_dict, task_file_to_dict
from todori.tasks.model import Task, TaskFile, TaskFileMetadata, utc_now
from todori.tasks.validate import check_version, validate_task_file


class TaskRepository:
    def __init__(
        self,
        project_root: Path | str,
        store: AtomicFileStore | None = None,
        config: Config | None = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.config = config or Config()
        self.store = store or AtomicFileStore(
            lock_provider=self.config.lock_provider(),
            retry=self.config.retry_policy(),
            session_lock_name=self.config.session_lock_file,
        )
        self.storage_dir = self.config.storage_path(self.project_root)
        self.task_file_path = self.config.tasks_path(self.project_root)
        self._file_created: datetime | None = None

    @property
    def session_lock_path(self) -> Path:
        return self.store.session_lock_path(self.task_file_path)

    def load_task_file(self) -> TaskFile | None:
        """Parse and validate the task file. ``None`` for a new project."""
        content = self.store.read(self.task_file_path)
        # An empty file is what a first write leaves behind if it dies after locking.
        if content is None or not content.strip():
            return None

        path = str(self.task_file_path)
        try:
            data = load_yaml(content)
        except yaml.YAMLError as e:
            raise ValidationError(message=f"Invalid YAML: {e}", code="E_YAML_PARSE", path=path) from e

        if isinstance(data, dict):
            check_version(data, file=path)

        issues = validate_task_file(data)
        if issues:
            raise ValidationError(
                message=f"{path}: {len(issues)} schema issue(s), first: {issues[0].path}: {issues[0].message}",
                code="E_SCHEMA",
                path=path,
                issues=[i.to_dict() for i in issues],
            )

        tf = task_file_from_dict(data)
        self._file_created = tf.metadata.created
        return tf

    def load_tasks(self) -> list[Task]:
        tf = self.load_task_file()
        return tf.tasks if tf is not None else []

    def save_tasks(self, tasks: list[Task]) -> None:
        now = utc_now()
        tf = TaskFile(
            project_root=str(self.project_root),
            metadata=TaskFileMetadata(
                created=self._file_created or now,
                updated=now,
                last_modified_by=self.store.session,
            ),
            tasks=list(tasks),
        )

        issues = validate_task_file(task_file_to_dict(tf))
        if issues:
            raise ValidationError(
                message=f"Refusing to save invalid task file: {issues[0].path}: {issues[0].message}",
                code="E_SCHEMA",
                path=str(self.task_file_path),
                issues=[i.to_dict() for i in issues],
            )

        self.store.write(self.task_file_path, dump_task_file(tf))
        self._file_created = tf.metadata.created
        log.debug(f"Saved {len(tasks)} task(s) to {self.task_file_path}")

    def initialize(self) -> bool:
        """Create the storage directory and an empty task file. Returns ``True`` if created."""
        if self.load_task_file() is not None:
            return False
        self.save_tasks([])
        log.debug(f"Initialized task storage at {self.storage_dir}")
        return True
