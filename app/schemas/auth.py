"""Request context schemas (acting tenant and actor)."""

from uuid import UUID

from pydantic import BaseModel

from app.db.enums import ActorType


class Actor(BaseModel):
    """Who caused a ledger entry or state change."""
    actor_type: ActorType = ActorType.SYSTEM
    actor_id: UUID | None = None

    @classmethod
    def from_user(cls, user_id: UUID | None) -> "Actor":
        """A user actor when an id is known, otherwise the system."""
        if user_id:
            return cls(actor_type=ActorType.USER, actor_id=user_id)
        return cls(actor_type=ActorType.SYSTEM)


class TenantContext(BaseModel):
    """
    Acting tenant for a request.

    Authentication happens upstream; this only carries the tenant the
    caller acts for and, when known, the user id. Cross-tenant authority
    is still checked per operation by the services.
    """
    tenant_id: UUID
    user_id: UUID | None = None

    @property
    def actor(self) -> Actor:
        return Actor.from_user(self.user_id)
