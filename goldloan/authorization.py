"""Capability checks for the GoldLoan engine.

All role and ownership rules live in ``AccessPolicy`` so that every
service asks the same question, ``check(actor, action, loan)``, instead of
testing roles inline.
"""
import logging

from goldloan.config import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_LOAN_OFFICER, ROLES
from goldloan.exceptions import ForbiddenError

logger = logging.getLogger(__name__)


class Action:
    """Operations subject to authorization."""
    LOAN_CREATE = "loan.create"
    LOAN_VIEW = "loan.view"
    LOAN_UPDATE = "loan.update"
    LOAN_DELETE = "loan.delete"
    LOAN_CHANGE_ACCOUNT = "loan.change_account"
    LOAN_TRANSITION = "loan.transition"
    LOAN_CLOSE = "loan.close"
    PAYMENT_RECORD = "payment.record"
    OUTSOURCE_VIEW = "outsource.view"
    OUTSOURCE_ASSIGN = "outsource.assign"
    ENTITY_MANAGE = "entity.manage"
    ENTITY_DEACTIVATE = "entity.deactivate"
    DOCUMENT_UPLOAD = "document.upload"
    DOCUMENT_VERIFY = "document.verify"
    DOCUMENT_DELETE = "document.delete"
    DASHBOARD_VIEW = "dashboard.view"
    CACHE_CLEAR = "cache.clear"
    CACHE_VIEW = "cache.view"


PRIVILEGED = frozenset({ROLE_ADMIN, ROLE_LOAN_OFFICER})
EVERYONE = frozenset(ROLES)

DEFAULT_PERMISSIONS = {
    Action.LOAN_CREATE: EVERYONE,
    Action.LOAN_VIEW: EVERYONE,
    Action.LOAN_UPDATE: EVERYONE,
    Action.LOAN_DELETE: PRIVILEGED,
    Action.LOAN_CHANGE_ACCOUNT: PRIVILEGED,
    Action.LOAN_TRANSITION: PRIVILEGED,
    Action.LOAN_CLOSE: PRIVILEGED,
    Action.PAYMENT_RECORD: EVERYONE,
    Action.OUTSOURCE_VIEW: EVERYONE,
    Action.OUTSOURCE_ASSIGN: PRIVILEGED,
    Action.ENTITY_MANAGE: PRIVILEGED,
    Action.ENTITY_DEACTIVATE: frozenset({ROLE_ADMIN}),
    Action.DOCUMENT_UPLOAD: EVERYONE,
    Action.DOCUMENT_VERIFY: PRIVILEGED,
    Action.DOCUMENT_DELETE: EVERYONE,
    Action.DASHBOARD_VIEW: EVERYONE,
    Action.CACHE_CLEAR: frozenset({ROLE_ADMIN}),
    Action.CACHE_VIEW: frozenset({ROLE_ADMIN}),
}


class AccessPolicy:
    """Decides whether an actor may perform an action on a loan.

    Two rules apply: the actor's role must be granted the action, and an
    employee may only touch loans they submitted.
    """

    def __init__(self, permissions=None):
        self.permissions = dict(DEFAULT_PERMISSIONS)
        if permissions:
            self.permissions.update(permissions)

    def is_allowed(self, actor, action, loan=None) -> bool:
        if actor is None or actor.role not in ROLES:
            return False
        if actor.role not in self.permissions.get(action, frozenset()):
            return False
        if loan is not None and actor.role == ROLE_EMPLOYEE:
            return loan.submitted_by == actor.id
        return True

    def check(self, actor, action, loan=None):
        """Raise ForbiddenError unless ``is_allowed`` holds."""
        if self.is_allowed(actor, action, loan):
            return

        role = getattr(actor, 'role', None)
        logger.warning("Denied %s for actor %s (role=%s)", action, getattr(actor, 'id', None), role)
        if (loan is not None and role == ROLE_EMPLOYEE
                and role in self.permissions.get(action, frozenset())):
            raise ForbiddenError(action, role, "Access denied to this loan")
        raise ForbiddenError(action, role)

    def scope_to_actor(self, actor):
        """Submitter filter for list queries, None when the actor sees all loans."""
        if actor is not None and actor.role == ROLE_EMPLOYEE:
            return actor.id
        return None

    def is_privileged(self, actor) -> bool:
        return actor is not None and actor.role in PRIVILEGED
