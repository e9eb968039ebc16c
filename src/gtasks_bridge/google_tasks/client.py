"""Google Tasks API client wrapper."""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import google_auth_httplib2
import httplib2
import structlog
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gtasks_bridge.auth.credentials import GoogleCredentialManager
from gtasks_bridge.core.models import Task, TaskUpdate
from gtasks_bridge.errors import (
    BridgeError,
    CredentialExpired,
    ProviderRejected,
    ProviderUnavailable,
    classify_http_status,
)
from gtasks_bridge.google_tasks.models import GoogleTask, insert_body, patch_body

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PAGE_SIZE = 100
HTTP_TIMEOUT_SECONDS = 30


class GoogleTasksClient:
    """Task provider backed by one Google task list.

    Token refresh is owned by the GoogleCredentialManager; the HTTP layer is
    built so it never refreshes on its own.
    """

    name = "google"

    def __init__(
        self,
        credentials: GoogleCredentialManager,
        tasklist_title: str = "Asana",
        tasklist_id: str | None = None,
        service: Any | None = None,
    ) -> None:
        """Initialize Google Tasks client.

        Args:
            credentials: Owner of the Google OAuth token
            tasklist_title: Title of the task list to sync (used when no id is given)
            tasklist_id: Explicit task list id
            service: Prebuilt ``tasks v1`` service (mainly for tests)
        """
        self.credentials = credentials
        self.tasklist_title = tasklist_title
        self._tasklist_id = tasklist_id
        self._service = service

    def _get_service(self) -> Any:
        if self._service is None:
            authed_http = google_auth_httplib2.AuthorizedHttp(
                self.credentials.http_credentials(),
                http=httplib2.Http(timeout=HTTP_TIMEOUT_SECONDS),
                refresh_status_codes=(),
            )
            self._service = build("tasks", "v1", http=authed_http, cache_discovery=False)
            logger.info("google_tasks_service_initialized")
        return self._service

    def _resolve_tasklist_id(self, service: Any) -> str:
        if self._tasklist_id:
            return self._tasklist_id

        page_token = None
        while True:
            results = service.tasklists().list(maxResults=PAGE_SIZE, pageToken=page_token).execute()
            for tasklist in results.get("items", []):
                if tasklist.get("title") == self.tasklist_title:
                    self._tasklist_id = tasklist["id"]
                    logger.info(
                        "google_tasklist_resolved",
                        tasklist_title=self.tasklist_title,
                        tasklist_id=self._tasklist_id,
                    )
                    return self._tasklist_id
            page_token = results.get("nextPageToken")
            if not page_token:
                break

        raise ProviderRejected(
            self.name, f"Task list '{self.tasklist_title}' not found; create it in Google Tasks"
        )

    async def _call(self, operation: str, fn: Callable[[Any, str], T], **context: Any) -> T:
        """Run ``fn(service, tasklist_id)`` in a worker thread, translating errors."""

        def run() -> T:
            service = self._get_service()
            return fn(service, self._resolve_tasklist_id(service))

        try:
            return await asyncio.to_thread(run)
        except BridgeError:
            raise
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            error_cls = classify_http_status(int(status) if status is not None else None)
            logger.error(
                "google_api_error",
                operation=operation,
                status=status,
                error=str(e),
                error_type=error_cls.__name__,
                **context,
            )
            raise error_cls(self.name, f"{operation} failed ({status}): {e}", status=status) from e
        except RefreshError as e:
            logger.error("google_api_error", operation=operation, error=str(e), **context)
            raise CredentialExpired(self.name, f"{operation} failed: {e}") from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            logger.error("google_api_unreachable", operation=operation, error=str(e), **context)
            raise ProviderUnavailable(self.name, f"{operation} failed: {e}") from e

    async def list_tasks(self) -> list[Task]:
        """List every top-level, non-deleted task in the task list.

        Completed and hidden tasks are included so completion can be synced.
        """

        def fetch(service: Any, tasklist_id: str) -> list[dict[str, Any]]:
            items: list[dict[str, Any]] = []
            page_token = None
            while True:
                results = (
                    service.tasks()
                    .list(
                        tasklist=tasklist_id,
                        maxResults=PAGE_SIZE,
                        showCompleted=True,
                        showHidden=True,
                        showDeleted=False,
                        pageToken=page_token,
                    )
                    .execute()
                )
                items.extend(results.get("items", []))
                page_token = results.get("nextPageToken")
                if not page_token:
                    return items

        raw_tasks = await self._call("list_tasks", fetch)

        tasks = []
        skipped = 0
        for item in raw_tasks:
            google_task = GoogleTask.model_validate(item)
            if google_task.deleted or google_task.is_subtask:
                skipped += 1
                continue
            tasks.append(google_task.to_task())

        logger.info(
            "fetched_tasks_from_tasklist",
            tasklist_title=self.tasklist_title,
            task_count=len(tasks),
            skipped=skipped,
        )
        return tasks

    async def create_task(self, task: Task) -> Task:
        """Insert a new task at the top of the task list."""
        body = insert_body(task)
        result = await self._call(
            "create_task",
            lambda service, tasklist_id: service.tasks().insert(tasklist=tasklist_id, body=body).execute(),
            task_name=task.title,
        )
        created = GoogleTask.model_validate(result)
        logger.info("created_task", provider=self.name, task_id=created.id, task_name=created.title)
        return created.to_task()

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Patch only the changed fields of a task."""
        body = patch_body(update)
        result = await self._call(
            "update_task",
            lambda service, tasklist_id: service.tasks()
            .patch(tasklist=tasklist_id, task=task_id, body=body)
            .execute(),
            task_id=task_id,
        )
        updated = GoogleTask.model_validate(result)
        logger.info("updated_task", provider=self.name, task_id=task_id, updates=sorted(body))
        return updated.to_task()

    async def delete_task(self, task_id: str) -> None:
        """Delete a task."""
        await self._call(
            "delete_task",
            lambda service, tasklist_id: service.tasks().delete(tasklist=tasklist_id, task=task_id).execute(),
            task_id=task_id,
        )
        logger.info("deleted_task", provider=self.name, task_id=task_id)

    async def refresh_credentials(self) -> None:
        """Force a token refresh through the credential manager."""
        await asyncio.to_thread(self.credentials.force_refresh)
