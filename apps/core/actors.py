"""
Who is performing an operation.

Scheduled jobs act as ``SYSTEM``; everything coming from a person is a
``HumanActor`` wrapping the authenticated user. Services branch on the type
rather than on a reserved account id.
"""

from dataclasses import dataclass
from typing import Optional, Union

APPROVAL_ROLES = ("admin", "manager")
STAFF_ROLES = ("staff",)


@dataclass(frozen=True)
class HumanActor:
    user: object

    @property
    def id(self):
        return self.user.pk

    @property
    def role(self):
        return self.user.role

    @property
    def display_name(self):
        return self.user.get_full_name() or self.user.username

    @property
    def is_approval_role(self):
        return self.role in APPROVAL_ROLES

    @property
    def is_staff_role(self):
        return self.role in STAFF_ROLES

    @property
    def is_system(self):
        return False


@dataclass(frozen=True)
class SystemActor:
    display_name: str = "System"

    @property
    def id(self):
        return None

    @property
    def role(self):
        return "system"

    @property
    def is_approval_role(self):
        return True

    @property
    def is_staff_role(self):
        return False

    @property
    def is_system(self):
        return True


SYSTEM = SystemActor()

Actor = Union[HumanActor, SystemActor]


def actor_for(user) -> Actor:
    """Wrap a user (or ``None`` for scheduled calls) in an actor."""
    if user is None:
        return SYSTEM
    return HumanActor(user)


def actor_user(actor: Actor) -> Optional[object]:
    """The user to store in ``created_by``/``actor`` columns; ``None`` for the system."""
    if isinstance(actor, HumanActor):
        return actor.user
    return None
