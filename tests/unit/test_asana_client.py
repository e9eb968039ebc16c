"""Unit tests for Asana client and models."""

from datetime import date
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
from asana.rest import ApiException

from gtasks_bridge.asana.client import AsanaClient
from gtasks_bridge.asana.models import AsanaTask, AsanaTaskUpdate
from gtasks_bridge.core.models import Task, TaskUpdate
from gtasks_bridge.errors import CredentialExpired, NotFound, ProviderRejected, ProviderUnavailable


class TestAsanaModels:
    """Tests for Asana data models."""

    def test_to_task(self, sample_asana_task_data: dict) -> None:
        task = AsanaTask.model_validate(sample_asana_task_data).to_task(ZoneInfo("UTC"))

        assert task.source_provider_id == "1200001"
        assert task.title == "Write report"
        assert task.notes == "Quarterly numbers"
        assert task.due_on == date(2025, 1, 10)
        assert task.counterpart_id is None

    def test_due_at_converted_in_configured_timezone(self, sample_asana_task_data: dict) -> None:
        """A due time late in the UTC day may fall on the previous local date."""
        sample_asana_task_data["due_on"] = "2025-01-11"
        sample_asana_task_data["due_at"] = "2025-01-11T02:00:00.000Z"
        asana_task = AsanaTask.model_validate(sample_asana_task_data)

        assert asana_task.due_date(ZoneInfo("America/New_York")) == date(2025, 1, 10)
        assert asana_task.due_date(ZoneInfo("UTC")) == date(2025, 1, 11)

    def test_update_payload_has_only_changed_fields(self) -> None:
        payload = AsanaTaskUpdate.from_update(TaskUpdate(title="New", due_on=None)).to_payload()
        assert payload == {"name": "New", "due_on": None}


class TestAsanaClient:
    """Tests for AsanaClient."""

    @pytest.fixture
    def client(self) -> AsanaClient:
        """Create a test client."""
        return AsanaClient(access_token="test_token", project_gid="67890")

    @pytest.mark.asyncio
    async def test_list_tasks_skips_subtasks(self, client: AsanaClient, sample_asana_task_data: dict) -> None:
        """Subtasks are not synced."""
        subtask = dict(sample_asana_task_data, gid="1200002", parent={"gid": "1200001"})

        with patch("asyncio.to_thread") as mock_to_thread:
            mock_to_thread.return_value = [sample_asana_task_data, subtask]

            tasks = await client.list_tasks()

        assert [task.source_provider_id for task in tasks] == ["1200001"]

    @pytest.mark.asyncio
    async def test_create_task_adds_to_project(self, client: AsanaClient, sample_asana_task_data: dict) -> None:
        """New tasks are created inside the synced project."""
        task = Task(
            title="Write report",
            notes="Quarterly numbers",
            updated_at="2025-01-01T12:00:00Z",
            source_provider_id="g-abc",
            due_on=date(2025, 1, 10),
            counterpart_id="ignored",
        )

        with patch("asyncio.to_thread") as mock_to_thread:
            mock_to_thread.return_value = sample_asana_task_data

            created = await client.create_task(task)

        body = mock_to_thread.call_args.args[1]
        assert body == {
            "data": {
                "name": "Write report",
                "notes": "Quarterly numbers",
                "completed": False,
                "due_on": "2025-01-10",
                "projects": ["67890"],
            }
        }
        assert created.source_provider_id == "1200001"

    @pytest.mark.asyncio
    async def test_update_task_sends_partial_body(self, client: AsanaClient, sample_asana_task_data: dict) -> None:
        """Only changed fields are sent, so an Asana due time is not clobbered."""
        updated_data = dict(sample_asana_task_data, completed=True, modified_at="2025-01-01T12:05:00.000Z")

        with patch("asyncio.to_thread") as mock_to_thread:
            mock_to_thread.return_value = updated_data

            task = await client.update_task("1200001", TaskUpdate(completed=True, counterpart_id="g-abc"))

        assert mock_to_thread.call_args.args[1] == {"data": {"completed": True}}
        assert mock_to_thread.call_args.args[2] == "1200001"
        assert task.completed is True
        assert task.updated_at.minute == 5

    @pytest.mark.asyncio
    async def test_delete_task(self, client: AsanaClient) -> None:
        with patch("asyncio.to_thread") as mock_to_thread:
            mock_to_thread.return_value = {}

            await client.delete_task("1200001")

        assert mock_to_thread.call_args.args == (client.tasks_api.delete_task, "1200001")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (401, CredentialExpired),
            (404, NotFound),
            (400, ProviderRejected),
            (429, ProviderUnavailable),
            (503, ProviderUnavailable),
        ],
    )
    async def test_api_errors_are_classified(self, client: AsanaClient, status: int, expected: type) -> None:
        with patch("asyncio.to_thread") as mock_to_thread:
            mock_to_thread.side_effect = ApiException(status=status, reason="error")

            with pytest.raises(expected) as exc_info:
                await client.update_task("1200001", TaskUpdate(title="x"))

        assert exc_info.value.provider == "asana"
        assert exc_info.value.status == status

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self, client: AsanaClient) -> None:
        with patch("asyncio.to_thread") as mock_to_thread:
            mock_to_thread.side_effect = ConnectionResetError("reset by peer")

            with pytest.raises(ProviderUnavailable):
                await client.list_tasks()

    @pytest.mark.asyncio
    async def test_refresh_credentials_is_not_possible(self, client: AsanaClient) -> None:
        """A rejected Personal Access Token needs the operator."""
        with pytest.raises(CredentialExpired):
            await client.refresh_credentials()
