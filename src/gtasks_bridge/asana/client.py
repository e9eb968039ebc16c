"""Asana API client wrapper."""

import asyncio
from typing import Any
from zoneinfo import ZoneInfo

import asana
import structlog
from asana.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from gtasks_bridge.asana.models import AsanaTask, AsanaTaskUpdate
from gtasks_bridge.core.models import Task, TaskUpdate
from gtasks_bridge.errors import CredentialExpired, ProviderUnavailable, classify_http_status

logger = structlog.get_logger(__name__)

TASK_OPT_FIELDS = ["name", "notes", "completed", "modified_at", "due_on", "due_at", "parent"]


class AsanaClient:
    """Task provider backed by one Asana project.

    Blocking SDK calls run in a worker thread. Every public method is a single
    remote round trip; retries are left to the caller.
    """

    name = "asana"

    def __init__(self, access_token: str, project_gid: str, due_date_timezone: str = "UTC") -> None:
        """Initialize Asana client.

        Args:
            access_token: Asana Personal Access Token
            project_gid: GID of the project whose tasks are synced
            due_date_timezone: Timezone used to turn ``due_at`` into a date
        """
        # Configure API client
        configuration = asana.Configuration()
        configuration.access_token = access_token
        self.api_client = asana.ApiClient(configuration)
        self.tasks_api = asana.TasksApi(self.api_client)

        self.project_gid = project_gid
        self.tz = ZoneInfo(due_date_timezone)

    def _translate(self, error: Exception, operation: str, **context: Any) -> Exception:
        """Convert an SDK or transport error into the bridge taxonomy."""
        if isinstance(error, ApiException):
            status = error.status
            error_cls = classify_http_status(status)
            message = f"{operation} failed ({status}): {error.reason}"
        else:
            status = None
            error_cls = ProviderUnavailable
            message = f"{operation} failed: {error}"

        logger.error(
            "asana_api_error",
            operation=operation,
            status=status,
            error=str(error),
            error_type=error_cls.__name__,
            **context,
        )
        return error_cls(self.name, message, status=status)

    @staticmethod
    def _as_dict(data: Any) -> dict[str, Any]:
        return data if isinstance(data, dict) else data.to_dict()

    def _parse_task(self, task_data: dict[str, Any]) -> AsanaTask:
        """Parse task data from Asana API into AsanaTask model.

        Args:
            task_data: Raw task data from Asana API

        Returns:
            AsanaTask object
        """
        return AsanaTask(
            gid=task_data["gid"],
            name=task_data.get("name") or "",
            notes=task_data.get("notes"),
            completed=task_data.get("completed", False),
            modified_at=task_data["modified_at"],
            due_on=task_data.get("due_on"),
            due_at=task_data.get("due_at"),
            parent=task_data.get("parent"),
        )

    async def list_tasks(self) -> list[Task]:
        """Get all top-level tasks from the project.

        Returns:
            List of normalized tasks

        Raises:
            ProviderUnavailable: On network or server errors
            CredentialExpired: If the access token was rejected
        """

        def fetch_all() -> list[dict[str, Any]]:
            # The SDK pages through results lazily, so drain it inside the thread
            response = self.tasks_api.get_tasks_for_project(
                self.project_gid,
                {"opt_fields": ",".join(TASK_OPT_FIELDS), "limit": 100},
            )
            return [self._as_dict(item) for item in response]

        try:
            raw_tasks = await asyncio.to_thread(fetch_all)
        except (ApiException, TransportError, OSError) as e:
            raise self._translate(e, "list_tasks", project_gid=self.project_gid) from e

        tasks = []
        skipped_subtasks = 0
        for task_data in raw_tasks:
            asana_task = self._parse_task(task_data)
            if asana_task.is_subtask:
                skipped_subtasks += 1
                continue
            tasks.append(asana_task.to_task(self.tz))

        logger.info(
            "fetched_tasks_from_project",
            project_gid=self.project_gid,
            task_count=len(tasks),
            skipped_subtasks=skipped_subtasks,
        )
        return tasks

    async def create_task(self, task: Task) -> Task:
        """Create a new task in the project.

        Args:
            task: Normalized task to create

        Returns:
            The created task as Asana reports it
        """
        task_data = AsanaTaskUpdate.from_task(task).to_payload()
        task_data["projects"] = [self.project_gid]

        try:
            task_response = await asyncio.to_thread(
                self.tasks_api.create_task,
                {"data": task_data},
                {"opt_fields": ",".join(TASK_OPT_FIELDS)},
            )
        except (ApiException, TransportError, OSError) as e:
            raise self._translate(e, "create_task", task_name=task.title) from e

        created = self._parse_task(self._as_dict(task_response))
        logger.info("created_task", provider=self.name, task_gid=created.gid, task_name=created.name)
        return created.to_task(self.tz)

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Update a task.

        Args:
            task_id: The GID of the task
            update: Fields to change

        Returns:
            Updated task
        """
        update_data = AsanaTaskUpdate.from_update(update).to_payload()

        try:
            task_response = await asyncio.to_thread(
                self.tasks_api.update_task,
                {"data": update_data},
                task_id,
                {"opt_fields": ",".join(TASK_OPT_FIELDS)},
            )
        except (ApiException, TransportError, OSError) as e:
            raise self._translate(e, "update_task", task_gid=task_id) from e

        updated = self._parse_task(self._as_dict(task_response))
        logger.info("updated_task", provider=self.name, task_gid=task_id, updates=sorted(update_data))
        return updated.to_task(self.tz)

    async def delete_task(self, task_id: str) -> None:
        """Delete a task.

        Args:
            task_id: The GID of the task
        """
        try:
            await asyncio.to_thread(self.tasks_api.delete_task, task_id)
        except (ApiException, TransportError, OSError) as e:
            raise self._translate(e, "delete_task", task_gid=task_id) from e

        logger.info("deleted_task", provider=self.name, task_gid=task_id)

    async def refresh_credentials(self) -> None:
        """Personal Access Tokens cannot be renewed programmatically."""
        raise CredentialExpired(
            self.name, "Asana access token was rejected; replace ASANA_ACCESS_TOKEN"
        )
