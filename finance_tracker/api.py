"""
API Boundary

Every operation the UI needs, returning an ApiResponse instead of
raising. Typed failures become their status code and error body;
storage failures become a 500 and are logged. Anything else is
audited as a system error and re-raised.

    | Failure            | status | body["error"]        |
    |--------------------|--------|----------------------|
    | Unauthenticated    | 401    | unauthenticated      |
    | PermissionDenied   | 403    | permission_denied    |
    | NotFound           | 404    | not_found            |
    | InvalidTimePeriod  | 400    | invalid_time_period  |
    | ValidationError    | 400    | validation_error     |
    | DuplicateEntry     | 409    | duplicate_entry      |
    | StorageError       | 500    | storage_error        |

HTTP framing itself is left to whatever web layer hosts this class.
"""

from datetime import date, datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel

from finance_tracker.errors import NotFound, TrackerError, Unauthenticated
from finance_tracker.orchestrator import AppComponents
from finance_tracker.services.storage import StorageError


logger = structlog.get_logger(__name__)

IdLike = Union[UUID, str]


class ApiResponse(BaseModel):
    """Status code and JSON-ready body of one API call."""

    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def to_body(value: Any) -> Any:
    """Convert results into JSON-ready values."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_body(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_body(item) for item in value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _principal_id(value: Optional[IdLike]) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise Unauthenticated("Malformed principal id")


def _entity_id(entity_type: str, value: IdLike) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise NotFound(entity_type, value)


def _profile_id_filter(value: Union[None, str, Iterable[IdLike]]) -> Optional[list[UUID]]:
    """
    Requested profile ids, as a list or a comma-separated string.

    Malformed ids are dropped like ids the caller cannot see.
    """
    if value is None:
        return None
    items = value.split(",") if isinstance(value, str) else value
    ids = []
    for item in items:
        if isinstance(item, UUID):
            ids.append(item)
            continue
        try:
            ids.append(UUID(str(item).strip()))
        except ValueError:
            continue
    return ids


class FinanceTrackerAPI:
    """
    Caller-facing surface of the tracker.

    Usage:
        api = FinanceTrackerAPI(create_app_components())
        response = await api.combined_analytics(user_id, period="1year")
        if response.ok: ...
    """

    def __init__(self, components: AppComponents):
        self._components = components

    async def _respond(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        status_code: int = 200,
    ) -> ApiResponse:
        try:
            result = await call()
        except TrackerError as e:
            return ApiResponse(status_code=e.status_code, body=e.to_dict())
        except StorageError as e:
            logger.error("storage_failure", operation=operation, error=str(e))
            await self._components.audit_logger.log_storage_error(operation, str(e))
            return ApiResponse(
                status_code=500,
                body={
                    "error": "storage_error",
                    "message": "The data store is unavailable. Please try again.",
                },
            )
        except Exception as e:
            await self._components.audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
            )
            raise
        return ApiResponse(status_code=status_code, body=to_body(result))

    # -------------------------------------------------------------------------
    # Principals / admin workflow
    # -------------------------------------------------------------------------

    async def register(
        self,
        principal_id: Optional[IdLike],
        email: str,
        name: Optional[str] = None,
    ) -> ApiResponse:
        return await self._respond(
            "register",
            lambda: self._components.admin.register(_principal_id(principal_id), email, name),
        )

    async def list_pending_principals(self, admin_id: Optional[IdLike]) -> ApiResponse:
        return await self._respond(
            "list_pending_principals",
            lambda: self._components.admin.list_pending(_principal_id(admin_id)),
        )

    async def list_principals(self, admin_id: Optional[IdLike]) -> ApiResponse:
        return await self._respond(
            "list_principals",
            lambda: self._components.admin.list_principals(_principal_id(admin_id)),
        )

    async def approve_principal(
        self,
        admin_id: Optional[IdLike],
        target_id: IdLike,
        role: Any,
        links: Iterable[Any] = (),
    ) -> ApiResponse:
        return await self._respond(
            "approve_principal",
            lambda: self._components.admin.approve(
                _principal_id(admin_id), _entity_id("principal", target_id), role, links
            ),
        )

    async def reject_principal(
        self,
        admin_id: Optional[IdLike],
        target_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "reject_principal",
            lambda: self._components.admin.reject(
                _principal_id(admin_id), _entity_id("principal", target_id)
            ),
        )

    async def update_principal_links(
        self,
        admin_id: Optional[IdLike],
        target_id: IdLike,
        links: Iterable[Any],
    ) -> ApiResponse:
        return await self._respond(
            "update_principal_links",
            lambda: self._components.admin.update_links(
                _principal_id(admin_id), _entity_id("principal", target_id), links
            ),
        )

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def visible_profiles(self, principal_id: Optional[IdLike]) -> ApiResponse:
        return await self._respond(
            "visible_profiles",
            lambda: self._components.engine.list_visible_profiles(_principal_id(principal_id)),
        )

    async def list_profiles(self, principal_id: Optional[IdLike]) -> ApiResponse:
        return await self._respond(
            "list_profiles",
            lambda: self._components.profiles.list_profiles(_principal_id(principal_id)),
        )

    async def get_profile(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "get_profile",
            lambda: self._components.profiles.get_profile(
                _principal_id(principal_id), _entity_id("profile", profile_id)
            ),
        )

    async def create_profile(self, principal_id: Optional[IdLike], name: Any) -> ApiResponse:
        return await self._respond(
            "create_profile",
            lambda: self._components.profiles.create_profile(_principal_id(principal_id), name),
            status_code=201,
        )

    async def rename_profile(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
        name: Any,
    ) -> ApiResponse:
        return await self._respond(
            "rename_profile",
            lambda: self._components.profiles.rename_profile(
                _principal_id(principal_id), _entity_id("profile", profile_id), name
            ),
        )

    async def delete_profile(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "delete_profile",
            lambda: self._components.profiles.delete_profile(
                _principal_id(principal_id), _entity_id("profile", profile_id)
            ),
            status_code=204,
        )

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def list_entries(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "list_entries",
            lambda: self._components.entries.list_entries(
                _principal_id(principal_id), _entity_id("profile", profile_id)
            ),
        )

    async def get_entry(
        self,
        principal_id: Optional[IdLike],
        entry_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "get_entry",
            lambda: self._components.entries.get_entry(
                _principal_id(principal_id), _entity_id("entry", entry_id)
            ),
        )

    async def latest_entry(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "latest_entry",
            lambda: self._components.entries.latest_entry(
                _principal_id(principal_id), _entity_id("profile", profile_id)
            ),
        )

    async def entry_by_date(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
        entry_date: Union[date, str],
    ) -> ApiResponse:
        return await self._respond(
            "entry_by_date",
            lambda: self._components.entries.entry_by_date(
                _principal_id(principal_id), _entity_id("profile", profile_id), entry_date
            ),
        )

    async def entry_before_date(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
        entry_date: Union[date, str],
    ) -> ApiResponse:
        return await self._respond(
            "entry_before_date",
            lambda: self._components.entries.entry_before_date(
                _principal_id(principal_id), _entity_id("profile", profile_id), entry_date
            ),
        )

    async def entry_dates(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "entry_dates",
            lambda: self._components.entries.entry_dates(
                _principal_id(principal_id), _entity_id("profile", profile_id)
            ),
        )

    async def create_entry(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
        draft: Any,
    ) -> ApiResponse:
        return await self._respond(
            "create_entry",
            lambda: self._components.entries.create_entry(
                _principal_id(principal_id), _entity_id("profile", profile_id), draft
            ),
            status_code=201,
        )

    async def update_entry(
        self,
        principal_id: Optional[IdLike],
        entry_id: IdLike,
        draft: Any,
    ) -> ApiResponse:
        return await self._respond(
            "update_entry",
            lambda: self._components.entries.update_entry(
                _principal_id(principal_id), _entity_id("entry", entry_id), draft
            ),
        )

    async def delete_entry(
        self,
        principal_id: Optional[IdLike],
        entry_id: IdLike,
    ) -> ApiResponse:
        return await self._respond(
            "delete_entry",
            lambda: self._components.entries.delete_entry(
                _principal_id(principal_id), _entity_id("entry", entry_id)
            ),
            status_code=204,
        )

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    async def combined_analytics(
        self,
        principal_id: Optional[IdLike],
        period: Any = None,
        profile_ids: Union[None, str, Iterable[IdLike]] = None,
    ) -> ApiResponse:
        return await self._respond(
            "combined_analytics",
            lambda: self._components.analytics.combined(
                _principal_id(principal_id), period, _profile_id_filter(profile_ids)
            ),
        )

    async def profile_analytics(
        self,
        principal_id: Optional[IdLike],
        profile_id: IdLike,
        period: Any = None,
    ) -> ApiResponse:
        return await self._respond(
            "profile_analytics",
            lambda: self._components.analytics.profile(
                _principal_id(principal_id), _entity_id("profile", profile_id), period
            ),
        )
