"""Identity store: dashboard users and their billing state.

Every other entity references a user id, so this is the leaf of the
ownership graph. Usernames, emails and external auth ids are unique
and enforced here at write time.
"""

from __future__ import annotations

import logging

from cryptodash.db.base import BaseStore
from cryptodash.db.schema import USERS
from cryptodash.errors import ConflictError, NotFoundError
from cryptodash.models import Plan, User, parse_enum

logger = logging.getLogger(__name__)


class IdentityStore(BaseStore):
    """Users keyed by id, also addressable by username, email, or auth id."""

    def create_user(
        self,
        *,
        username: str,
        email: str,
        external_auth_id: str | None = None,
        plan: Plan | str = Plan.STARTER,
    ) -> User:
        """Create a user on the starter plan unless told otherwise.

        Args:
            username: Unique display handle.
            email: Unique contact address.
            external_auth_id: Identity-provider uid, unique when given.
            plan: Initial subscription plan.

        Returns:
            The stored user, with billing fields empty.

        Raises:
            ConflictError: If username, email, or external_auth_id is taken.
            ValidationError: If username/email is blank or plan is unknown.

        """
        username = self._require_text(username, "username")
        email = self._require_text(email, "email")
        plan_value = parse_enum(Plan, plan, "plan").value

        users = self._table(USERS)
        with self._engine.transaction():
            if users.count(username=username):
                msg = f"Username '{username}' is already taken"
                raise ConflictError(msg)
            if users.count(email=email):
                msg = f"Email '{email}' is already registered"
                raise ConflictError(msg)
            if external_auth_id is not None and users.count(
                external_auth_id=external_auth_id
            ):
                msg = "External auth id is already linked to another user"
                raise ConflictError(msg)

            row = users.insert(
                {
                    "username": username,
                    "email": email,
                    "external_auth_id": external_auth_id,
                    "plan": plan_value,
                    "billing_customer_id": None,
                    "billing_subscription_id": None,
                    "created_at": self._now(),
                }
            )

        logger.info("Created user %d (%s)", row["id"], username)
        return User.from_row(row)

    def get_user(self, user_id: int) -> User | None:
        row = self._table(USERS).get(user_id)
        return User.from_row(row) if row else None

    def get_user_by_username(self, username: str) -> User | None:
        return self._find_one(username=username)

    def get_user_by_email(self, email: str) -> User | None:
        return self._find_one(email=email)

    def get_user_by_external_auth_id(self, external_auth_id: str | None) -> User | None:
        if external_auth_id is None:
            return None
        return self._find_one(external_auth_id=external_auth_id)

    def list_users(self) -> list[User]:
        """Return every user in id order."""
        return [User.from_row(row) for row in self._table(USERS).find()]

    def set_billing_info(
        self,
        user_id: int,
        customer_id: str | None,
        subscription_id: str | None,
    ) -> User:
        """Record the billing provider's customer and subscription ids.

        Raises:
            NotFoundError: If the user does not exist.

        """
        row = self._table(USERS).update(
            user_id,
            {
                "billing_customer_id": customer_id,
                "billing_subscription_id": subscription_id,
            },
        )
        if row is None:
            raise NotFoundError("User", user_id)
        logger.info("Updated billing info for user %d", user_id)
        return User.from_row(row)

    def set_plan(self, user_id: int, plan: Plan | str) -> User:
        """Move a user to another subscription plan.

        Raises:
            NotFoundError: If the user does not exist.
            ValidationError: If the plan is unknown.

        """
        plan_value = parse_enum(Plan, plan, "plan").value
        row = self._table(USERS).update(user_id, {"plan": plan_value})
        if row is None:
            raise NotFoundError("User", user_id)
        logger.info("User %d moved to plan %s", user_id, plan_value)
        return User.from_row(row)

    def _find_one(self, **criteria: str) -> User | None:
        rows = self._table(USERS).find(**criteria)
        return User.from_row(rows[0]) if rows else None
