"""Contract implemented by the Asana and Google Tasks clients."""

from collections.abc import Sequence
from typing import Protocol

from gtasks_bridge.core.models import Task, TaskUpdate


class TaskProvider(Protocol):
    """Minimal task CRUD surface the reconciliation engine relies on.

    Every mutating call is a single remote round trip; implementations never
    retry. Errors are raised from the ``gtasks_bridge.errors`` taxonomy.
    """

    name: str

    async def list_tasks(self) -> Sequence[Task]:
        """Return every task currently on the provider.

        Raises:
            ProviderUnavailable: On network, timeout or server errors
            CredentialExpired: If the provider rejected our credentials
        """
        ...

    async def create_task(self, task: Task) -> Task:
        """Create ``task`` and return the provider's view of it.

        Raises:
            ProviderRejected: If the provider refused the payload
        """
        ...

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        """Apply ``update`` to an existing task and return the result.

        Raises:
            ProviderRejected: If the provider refused the payload
            NotFound: If the task no longer exists
        """
        ...

    async def delete_task(self, task_id: str) -> None:
        """Delete a task.

        Raises:
            NotFound: If the task was already gone
        """
        ...

    async def refresh_credentials(self) -> None:
        """Renew credentials after a CredentialExpired error.

        Raises:
            CredentialExpired: If renewal is impossible
        """
        ...
