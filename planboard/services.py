"""Per-application service container."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request

from planboard.errors import UNAVAILABLE, PlanboardError

if TYPE_CHECKING:
    from planboard.config import AppConfig
    from planboard.document_store import FileDocumentStore
    from planboard.indexer import ProjectIndex
    from planboard.mutations import MutationGateway


@dataclass
class Services:
    config: "AppConfig"
    store: "FileDocumentStore"
    index: "ProjectIndex"
    gateway: "MutationGateway"


def get_request_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise PlanboardError(
            "SERVICE_UNAVAILABLE",
            "Planboard services are not initialized.",
            status_code=UNAVAILABLE,
        )
    return services
