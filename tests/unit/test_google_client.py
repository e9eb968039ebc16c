"""Unit tests for Google Tasks client and models."""

from datetime import date
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from gtasks_bridge.auth.credentials import GoogleCredentialManager
from gtasks_bridge.core.models import Task, TaskUpdate
from gtasks_bridge.errors import CredentialExpired, NotFound, ProviderRejected, ProviderUnavailable
from gtasks_bridge.google_tasks.client import GoogleTasksClient
from gtasks_bridge.google_tasks.models import (
    GoogleTask,
    format_due,
    insert_body,
    patch_body,
    split_marker,
    with_marker,
)


def http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "boom"}}')


class TestMarker:
    """Tests for the counterpart marker kept in Google notes."""

    def test_split_marker(self) -> None:
        assert split_marker("Buy milk\n---\n1200001") == ("Buy milk", "1200001")

    def test_marker_only(self) -> None:
        assert split_marker(with_marker("", "1200001")) == ("", "1200001")

    def test_no_marker(self) -> None:
        assert split_marker("plain notes") == ("plain notes", None)
        assert split_marker(None) == ("", None)

    def test_separator_in_user_text_is_kept(self) -> None:
        """A horizontal rule followed by prose is not a marker."""
        notes = "intro\n---\nmore text"
        assert split_marker(notes) == (notes, None)

    def test_round_trip_preserves_user_notes(self) -> None:
        notes = "line one\nline two"
        assert split_marker(with_marker(notes, "42")) == (notes, "42")


class TestGoogleModels:
    """Tests for GoogleTask conversion."""

    def test_to_task_strips_marker(self, sample_google_task_data: dict) -> None:
        task = GoogleTask.model_validate(sample_google_task_data).to_task()

        assert task.source_provider_id == "g-abc"
        assert task.notes == "Quarterly numbers"
        assert task.counterpart_id == "1200001"
        assert task.due_on == date(2025, 1, 10)
        assert task.completed is False

    def test_insert_body(self) -> None:
        task = Task(
            title="Write report",
            notes="n",
            completed=True,
            updated_at="2025-01-01T12:00:00Z",
            source_provider_id="1200001",
            due_on=date(2025, 1, 10),
            counterpart_id="1200001",
        )

        assert insert_body(task) == {
            "title": "Write report",
            "notes": "n\n---\n1200001",
            "status": "completed",
            "due": "2025-01-10T00:00:00.000Z",
        }

    def test_patch_body_uncomplete_clears_completion(self) -> None:
        body = patch_body(TaskUpdate(completed=False))
        assert body == {"status": "needsAction", "completed": None}

    def test_patch_body_clears_due(self) -> None:
        assert patch_body(TaskUpdate(due_on=None)) == {"due": None}
        assert format_due(date(2025, 3, 1)) == "2025-03-01T00:00:00.000Z"

    def test_patch_body_without_notes_leaves_marker_alone(self) -> None:
        assert patch_body(TaskUpdate(title="x", counterpart_id="1200001")) == {"title": "x"}


class TestGoogleTasksClient:
    """Tests for GoogleTasksClient."""

    @pytest.fixture
    def credentials(self) -> MagicMock:
        return MagicMock(spec=GoogleCredentialManager)

    @pytest.fixture
    def service(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def client(self, credentials: MagicMock, service: MagicMock) -> GoogleTasksClient:
        return GoogleTasksClient(credentials, tasklist_id="list-1", service=service)

    @pytest.mark.asyncio
    async def test_list_tasks_pages_and_filters(
        self, client: GoogleTasksClient, service: MagicMock, sample_google_task_data: dict
    ) -> None:
        """Every page is read; deleted tasks and subtasks are skipped."""
        deleted = dict(sample_google_task_data, id="g-del", deleted=True)
        subtask = dict(sample_google_task_data, id="g-sub", parent="g-abc")
        service.tasks.return_value.list.return_value.execute.side_effect = [
            {"items": [sample_google_task_data], "nextPageToken": "p2"},
            {"items": [deleted, subtask]},
        ]

        tasks = await client.list_tasks()

        assert [task.source_provider_id for task in tasks] == ["g-abc"]
        list_kwargs = service.tasks.return_value.list.call_args.kwargs
        assert list_kwargs["tasklist"] == "list-1"
        assert list_kwargs["showCompleted"] is True
        assert list_kwargs["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_tasklist_resolved_by_title(
        self, credentials: MagicMock, service: MagicMock, sample_google_task_data: dict
    ) -> None:
        client = GoogleTasksClient(credentials, tasklist_title="Asana", service=service)
        service.tasklists.return_value.list.return_value.execute.return_value = {
            "items": [{"id": "L1", "title": "My Tasks"}, {"id": "L2", "title": "Asana"}]
        }
        service.tasks.return_value.list.return_value.execute.return_value = {"items": [sample_google_task_data]}

        await client.list_tasks()

        assert service.tasks.return_value.list.call_args.kwargs["tasklist"] == "L2"

    @pytest.mark.asyncio
    async def test_missing_tasklist_is_rejected(self, credentials: MagicMock, service: MagicMock) -> None:
        client = GoogleTasksClient(credentials, tasklist_title="Asana", service=service)
        service.tasklists.return_value.list.return_value.execute.return_value = {"items": []}

        with pytest.raises(ProviderRejected):
            await client.list_tasks()

    @pytest.mark.asyncio
    async def test_create_task_writes_marker(
        self, client: GoogleTasksClient, service: MagicMock, sample_google_task_data: dict
    ) -> None:
        service.tasks.return_value.insert.return_value.execute.return_value = sample_google_task_data
        task = Task(
            title="Write report",
            notes="Quarterly numbers",
            updated_at="2025-01-01T12:00:00Z",
            source_provider_id="1200001",
            counterpart_id="1200001",
        )

        created = await client.create_task(task)

        body = service.tasks.return_value.insert.call_args.kwargs["body"]
        assert body["notes"] == "Quarterly numbers\n---\n1200001"
        assert created.source_provider_id == "g-abc"
        assert created.notes == "Quarterly numbers"

    @pytest.mark.asyncio
    async def test_update_task_patches(
        self, client: GoogleTasksClient, service: MagicMock, sample_google_task_data: dict
    ) -> None:
        service.tasks.return_value.patch.return_value.execute.return_value = dict(
            sample_google_task_data, status="completed"
        )

        updated = await client.update_task("g-abc", TaskUpdate(completed=True))

        patch_kwargs = service.tasks.return_value.patch.call_args.kwargs
        assert patch_kwargs["task"] == "g-abc"
        assert patch_kwargs["body"] == {"status": "completed"}
        assert updated.completed is True

    @pytest.mark.asyncio
    async def test_delete_task(self, client: GoogleTasksClient, service: MagicMock) -> None:
        service.tasks.return_value.delete.return_value.execute.return_value = ""

        await client.delete_task("g-abc")

        service.tasks.return_value.delete.assert_called_once_with(tasklist="list-1", task="g-abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (401, CredentialExpired),
            (404, NotFound),
            (410, NotFound),
            (400, ProviderRejected),
            (500, ProviderUnavailable),
        ],
    )
    async def test_http_errors_are_classified(
        self, client: GoogleTasksClient, service: MagicMock, status: int, expected: type
    ) -> None:
        service.tasks.return_value.delete.return_value.execute.side_effect = http_error(status)

        with pytest.raises(expected) as exc_info:
            await client.delete_task("g-abc")

        assert exc_info.value.provider == "google"

    @pytest.mark.asyncio
    async def test_refresh_error_is_credential_expired(self, client: GoogleTasksClient, service: MagicMock) -> None:
        service.tasks.return_value.list.return_value.execute.side_effect = RefreshError("invalid_grant")

        with pytest.raises(CredentialExpired):
            await client.list_tasks()

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self, client: GoogleTasksClient, service: MagicMock) -> None:
        service.tasks.return_value.list.return_value.execute.side_effect = TimeoutError("timed out")

        with pytest.raises(ProviderUnavailable):
            await client.list_tasks()

    @pytest.mark.asyncio
    async def test_credential_errors_pass_through(self, client: GoogleTasksClient, service: MagicMock) -> None:
        """Errors raised by the credential manager keep their type."""
        service.tasks.return_value.list.return_value.execute.side_effect = CredentialExpired("google", "no token")

        with pytest.raises(CredentialExpired):
            await client.list_tasks()

    def test_service_authorizes_through_manager(self) -> None:
        """The HTTP layer gets the manager's view, never raw refreshable credentials."""
        manager = MagicMock(spec=GoogleCredentialManager)
        client = GoogleTasksClient(manager, tasklist_id="list-1")

        with (
            patch("gtasks_bridge.google_tasks.client.google_auth_httplib2.AuthorizedHttp") as mock_http,
            patch("gtasks_bridge.google_tasks.client.build") as mock_build,
        ):
            assert client._get_service() is mock_build.return_value
            client._get_service()

        mock_build.assert_called_once()
        assert mock_http.call_args.args[0] is manager.http_credentials.return_value
        assert mock_http.call_args.kwargs["refresh_status_codes"] == ()
        manager.get_credentials.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_credentials(self, client: GoogleTasksClient, credentials: MagicMock) -> None:
        await client.refresh_credentials()
        credentials.force_refresh.assert_called_once_with()
