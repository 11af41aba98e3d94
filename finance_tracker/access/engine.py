"""
Access Control Engine

Decides, for every data access, which profiles a principal may see or
mutate. This is the application-level equivalent of row-level security:
one module consulted before every access instead of checks scattered
through the flows.

CRITICAL RULES:
1. The role is ALWAYS read from the stored Principal, never from the caller
2. Each decision reads role and links exactly once (one AccessSnapshot),
   so a concurrent downgrade can never be seen half-way through a check
3. Nothing is cached across calls
4. Admins see and edit every profile; everyone else only what their
   ProfileLink rows grant

DESIGN DECISION: Duplicate (user, profile) links are prevented on write
(storage upserts the pair) and tolerated on read (the strongest
permission wins).
"""

from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from finance_tracker.audit import AuditLogger
from finance_tracker.errors import (
    DenialReason,
    NotFound,
    PermissionDenied,
    Unauthenticated,
    ValidationError,
)
from finance_tracker.models.finance import (
    LinkGrant,
    Permission,
    Principal,
    PrincipalWithLinks,
    ProfileLink,
    ProfileWithPermission,
    Role,
    ValidationIssue,
    utcnow,
)
from finance_tracker.services.storage import FinanceStorageInterface


_PERMISSION_RANK = {Permission.READ: 1, Permission.EDIT: 2}

APPROVABLE_ROLES = (Role.APPROVED, Role.ADMIN)


def strongest(a: Optional[Permission], b: Permission) -> Permission:
    """The stronger of two permissions (edit beats read)."""
    if a is None or _PERMISSION_RANK[b] > _PERMISSION_RANK[a]:
        return b
    return a


class AccessSnapshot(BaseModel):
    """
    Role and links of one principal, read once for one decision.
    """

    principal: Principal
    links: list[ProfileLink] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.principal.role == Role.ADMIN

    def permissions(self) -> dict[UUID, Permission]:
        """profile id -> strongest permission granted by the links."""
        granted: dict[UUID, Permission] = {}
        for link in self.links:
            granted[link.profile_id] = strongest(
                granted.get(link.profile_id), link.permission
            )
        return granted

    def permission_for(self, profile_id: UUID) -> Optional[Permission]:
        """Effective permission on a profile (admins always EDIT)."""
        if self.is_admin:
            return Permission.EDIT
        return self.permissions().get(profile_id)

    def can_read(self, profile_id: UUID) -> bool:
        return self.permission_for(profile_id) is not None

    def can_write(self, profile_id: UUID) -> bool:
        return self.permission_for(profile_id) == Permission.EDIT


class AccessControlEngine:
    """
    Authorization decisions and the admin approval workflow.

    Usage:
        engine = AccessControlEngine(storage, audit_logger)
        await engine.require_write(principal_id, profile_id, "update_entry")
    """

    def __init__(
        self,
        storage: FinanceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            storage: Storage backend holding principals, profiles and links
            audit_logger: Receives an event for every denied access
        """
        self._storage = storage
        self._audit = audit_logger

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    async def snapshot(self, principal_id: Optional[UUID]) -> AccessSnapshot:
        """
        Resolve the principal and its links once.

        Raises:
            Unauthenticated: If principal_id is None or unknown
        """
        if principal_id is None:
            raise Unauthenticated()
        principal = await self._storage.get_principal(principal_id)
        if principal is None:
            raise Unauthenticated("Unknown principal")

        # Admins never need their links
        links = []
        if principal.role != Role.ADMIN:
            links = await self._storage.list_links_for_principal(principal_id)

        return AccessSnapshot(principal=principal, links=links)

    async def _deny(
        self,
        snapshot: AccessSnapshot,
        operation: str,
        reason: DenialReason,
        profile_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> PermissionDenied:
        if self._audit:
            await self._audit.log_access_denied(
                principal_id=snapshot.principal.id,
                operation=operation,
                reason=reason.value,
                profile_id=profile_id,
                correlation_id=correlation_id,
            )
        return PermissionDenied(
            operation=operation,
            reason=reason,
            profile_id=profile_id,
            principal_id=snapshot.principal.id,
        )

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    async def list_visible_profiles(self, principal_id: Optional[UUID]) -> set[UUID]:
        """
        Profiles the principal may read.

        All profiles for admins; otherwise the distinct profiles of the
        principal's links. An empty set is a valid answer, not an error.
        """
        snapshot = await self.snapshot(principal_id)
        if snapshot.is_admin:
            return {profile.id for profile in await self._storage.list_profiles()}
        return set(snapshot.permissions())

    async def can_read(self, principal_id: Optional[UUID], profile_id: UUID) -> bool:
        return (await self.snapshot(principal_id)).can_read(profile_id)

    async def can_write(self, principal_id: Optional[UUID], profile_id: UUID) -> bool:
        return (await self.snapshot(principal_id)).can_write(profile_id)

    async def can_manage_profile(self, principal_id: Optional[UUID]) -> bool:
        """Rename/delete profiles and run the approval workflow: admins only."""
        return (await self.snapshot(principal_id)).is_admin

    async def can_create_profile(self, principal_id: Optional[UUID]) -> bool:
        snapshot = await self.snapshot(principal_id)
        return snapshot.principal.role in (Role.ADMIN, Role.APPROVED)

    async def require_read(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        operation: str = "read",
        correlation_id: Optional[UUID] = None,
    ) -> AccessSnapshot:
        """
        Raises:
            PermissionDenied: With reason NO_ACCESS if no link grants read
        """
        snapshot = await self.snapshot(principal_id)
        if not snapshot.can_read(profile_id):
            raise await self._deny(
                snapshot, operation, DenialReason.NO_ACCESS, profile_id, correlation_id
            )
        return snapshot

    async def require_write(
        self,
        principal_id: Optional[UUID],
        profile_id: UUID,
        operation: str = "write",
        correlation_id: Optional[UUID] = None,
    ) -> AccessSnapshot:
        """
        Raises:
            PermissionDenied: READ_ONLY when linked with read only,
                NO_ACCESS when not linked at all
        """
        snapshot = await self.snapshot(principal_id)
        permission = snapshot.permission_for(profile_id)
        if permission == Permission.EDIT:
            return snapshot
        reason = DenialReason.READ_ONLY if permission else DenialReason.NO_ACCESS
        raise await self._deny(snapshot, operation, reason, profile_id, correlation_id)

    async def require_admin(
        self,
        principal_id: Optional[UUID],
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AccessSnapshot:
        snapshot = await self.snapshot(principal_id)
        if not snapshot.is_admin:
            raise await self._deny(
                snapshot, operation, DenialReason.ADMIN_REQUIRED, None, correlation_id
            )
        return snapshot

    async def require_profile_creator(
        self,
        principal_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AccessSnapshot:
        """Admins and approved principals may create profiles."""
        snapshot = await self.snapshot(principal_id)
        if snapshot.principal.role not in (Role.ADMIN, Role.APPROVED):
            raise await self._deny(
                snapshot, "create_profile", DenialReason.NOT_APPROVED, None, correlation_id
            )
        return snapshot

    # -------------------------------------------------------------------------
    # Principal lifecycle
    # -------------------------------------------------------------------------

    async def register_principal(
        self,
        principal_id: Optional[UUID],
        email: str,
        name: Optional[str] = None,
    ) -> tuple[Principal, bool]:
        """
        Record a principal on first sign-in.

        CRITICAL: The first principal ever registered becomes admin and is
        approved immediately. Every later one starts pending.

        Returns:
            (principal, created); an existing principal is returned unchanged
        """
        if principal_id is None:
            raise Unauthenticated()

        existing = await self._storage.get_principal(principal_id)
        if existing is not None:
            return existing, False

        is_first = await self._storage.count_principals() == 0
        now = utcnow()
        principal = Principal(
            id=principal_id,
            email=email,
            name=name,
            role=Role.ADMIN if is_first else Role.PENDING,
            approved_at=now if is_first else None,
            created_at=now,
            updated_at=now,
        )
        await self._storage.save_principal(principal)
        return principal, True

    @staticmethod
    def _coerce_grants(links: Iterable[Any]) -> list[LinkGrant]:
        grants = []
        issues = []
        for index, item in enumerate(links):
            try:
                grants.append(
                    item if isinstance(item, LinkGrant) else LinkGrant.model_validate(item)
                )
            except PydanticValidationError as e:
                issues.append(ValidationIssue(
                    field=f"links[{index}]",
                    issue_type="invalid_value",
                    message=e.errors()[0]["msg"],
                    severity="error",
                ))
        if issues:
            raise ValidationError(issues)
        return grants

    async def _load_target(self, target_id: UUID) -> Principal:
        target = await self._storage.get_principal(target_id)
        if target is None:
            raise NotFound("principal", target_id)
        return target

    async def _replace_links(
        self,
        user_id: UUID,
        grants: Sequence[LinkGrant],
    ) -> list[ProfileLink]:
        """
        Replace a principal's whole link set.

        New grants are upserted first and stale links removed afterwards.
        """
        merged: dict[UUID, Permission] = {}
        for grant in grants:
            merged[grant.profile_id] = strongest(merged.get(grant.profile_id), grant.permission)

        for profile_id in merged:
            if await self._storage.get_profile(profile_id) is None:
                raise NotFound("profile", profile_id)

        existing = await self._storage.list_links_for_principal(user_id)

        saved = []
        for profile_id, permission in merged.items():
            saved.append(await self._storage.save_link(ProfileLink(
                user_id=user_id,
                profile_id=profile_id,
                permission=permission,
            )))

        kept_ids = {link.id for link in saved}
        for link in existing:
            if link.id not in kept_ids:
                await self._storage.delete_link(link.id)
        return saved

    async def approve_principal(
        self,
        admin_id: Optional[UUID],
        target_id: UUID,
        new_role: Any,
        links: Iterable[Any] = (),
        correlation_id: Optional[UUID] = None,
    ) -> PrincipalWithLinks:
        """
        Approve a principal with a role and a set of profile links.

        Zero links is valid: the principal is approved but sees nothing
        until an admin grants access.

        Raises:
            PermissionDenied: If admin_id is not an admin
            ValidationError: If new_role is not approved/admin, a link is
                malformed, or the target was rejected
            NotFound: If the target or a linked profile does not exist
        """
        snapshot = await self.require_admin(admin_id, "approve_principal", correlation_id)

        try:
            role = Role(new_role)
        except (ValueError, TypeError):
            role = None
        if role not in APPROVABLE_ROLES:
            raise ValidationError([ValidationIssue(
                field="role",
                issue_type="invalid_value",
                message='Invalid role. Must be "admin" or "approved"',
                severity="error",
            )])
        grants = self._coerce_grants(links)

        target = await self._load_target(target_id)
        if target.role == Role.REJECTED:
            raise ValidationError([ValidationIssue(
                field="role",
                issue_type="invalid_transition",
                message="A rejected principal cannot be approved",
                severity="error",
            )])

        now = utcnow()
        target.role = role
        target.approved_at = now
        target.approved_by = snapshot.principal.id
        target.updated_at = now

        saved_links = await self._replace_links(target.id, grants)
        await self._storage.save_principal(target)
        return PrincipalWithLinks(principal=target, links=saved_links)

    async def reject_principal(
        self,
        admin_id: Optional[UUID],
        target_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Principal:
        """
        Reject a principal: the record and its links are removed.

        Returns:
            The principal as it was before removal
        """
        snapshot = await self.require_admin(admin_id, "reject_principal", correlation_id)
        if target_id == snapshot.principal.id:
            raise ValidationError([ValidationIssue(
                field="target_id",
                issue_type="invalid_value",
                message="Admins cannot reject themselves",
                severity="error",
            )])
        target = await self._load_target(target_id)
        await self._storage.delete_principal(target_id)
        return target

    async def update_principal_links(
        self,
        admin_id: Optional[UUID],
        target_id: UUID,
        links: Iterable[Any],
        correlation_id: Optional[UUID] = None,
    ) -> PrincipalWithLinks:
        """Replace the link set of an approved principal."""
        await self.require_admin(admin_id, "update_principal_links", correlation_id)
        grants = self._coerce_grants(links)

        target = await self._load_target(target_id)
        if target.role != Role.APPROVED:
            raise ValidationError([ValidationIssue(
                field="target_id",
                issue_type="invalid_state",
                message=f"Links can only be edited for approved principals (role is {target.role.value})",
                severity="error",
            )])

        saved_links = await self._replace_links(target.id, grants)
        return PrincipalWithLinks(principal=target, links=saved_links)

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    async def list_pending_principals(
        self,
        admin_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> list[Principal]:
        await self.require_admin(admin_id, "list_pending_principals", correlation_id)
        return await self._storage.list_principals(role=Role.PENDING)

    async def list_principals_with_links(
        self,
        admin_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> list[PrincipalWithLinks]:
        await self.require_admin(admin_id, "list_principals_with_links", correlation_id)
        result = []
        for principal in await self._storage.list_principals():
            links = await self._storage.list_links_for_principal(principal.id)
            result.append(PrincipalWithLinks(principal=principal, links=links))
        return result

    async def list_profiles_with_permissions(
        self,
        principal_id: Optional[UUID],
    ) -> list[ProfileWithPermission]:
        """
        Profiles visible to the principal with the permission it holds.

        Admins get every profile with EDIT. Ordered by profile name.
        """
        snapshot = await self.snapshot(principal_id)
        if snapshot.is_admin:
            profiles = await self._storage.list_profiles()
            return [
                ProfileWithPermission(id=p.id, name=p.name, permission=Permission.EDIT)
                for p in profiles
            ]

        granted = snapshot.permissions()
        if not granted:
            return []
        profiles = await self._storage.list_profiles(granted.keys())
        return [
            ProfileWithPermission(id=p.id, name=p.name, permission=granted[p.id])
            for p in profiles
        ]
