"""
External Collaborators

Narrow interfaces the engine depends on but does not own: the repository
that stores collections and environments, and the HTTP executor that issues
requests. An in-memory repository is provided for embedding and tests.
"""

from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from .cancellation import CancellationToken
from .models import Collection, Environment, HttpRequest, HttpResponse


@runtime_checkable
class FlowRepository(Protocol):
    """Read access to already-validated collections and environments."""

    async def get_collection(self, collection_id: str) -> Optional[Collection]:
        ...

    async def get_request_in_collection(self, collection_id: str,
                                        request_id: str) -> Optional[HttpRequest]:
        ...

    async def get_environment(self, environment_id: str) -> Optional[Environment]:
        ...


@runtime_checkable
class HttpExecutor(Protocol):
    """
    Issues one resolved request.

    Non-2xx statuses are ordinary responses. Transport failures are
    reported through HttpResponse.error rather than raised. Cancellation
    of the token aborts the call with FlowCancelled.
    """

    async def execute(self, request: HttpRequest,
                      cancellation: CancellationToken) -> HttpResponse:
        ...


class InMemoryRepository:
    """Dict-backed FlowRepository."""

    def __init__(self, collections: Iterable[Collection] = (),
                 environments: Iterable[Environment] = ()):
        self.collections: Dict[str, Collection] = {c.id: c for c in collections}
        self.environments: Dict[str, Environment] = {e.id: e for e in environments}

    @classmethod
    def from_documents(cls, collections: Iterable[dict] = (),
                       environments: Iterable[dict] = ()) -> 'InMemoryRepository':
        """Build from raw JSON documents, validating each one."""
        return cls(
            collections=[Collection.model_validate(c) for c in collections],
            environments=[Environment.model_validate(e) for e in environments],
        )

    def add_collection(self, collection: Collection) -> None:
        self.collections[collection.id] = collection

    def add_environment(self, environment: Environment) -> None:
        self.environments[environment.id] = environment

    async def get_collection(self, collection_id: str) -> Optional[Collection]:
        return self.collections.get(collection_id)

    async def get_request_in_collection(self, collection_id: str,
                                        request_id: str) -> Optional[HttpRequest]:
        collection = self.collections.get(collection_id)
        if collection is None:
            return None
        return collection.find_request(request_id)

    async def get_environment(self, environment_id: str) -> Optional[Environment]:
        return self.environments.get(environment_id)
