"""
Members module - member records, CSV export and the reconciliation with
Keycloak accounts.
"""

from mitgliederverwaltung.members.models import BaseGruppe, BasePerson, BaseStatus
from mitgliederverwaltung.members.placeholder import make_placeholder_email
from mitgliederverwaltung.members.reconciliation import (
    MemberUpdateResult,
    ReconciliationEngine,
)
from mitgliederverwaltung.members.saga import Saga
from mitgliederverwaltung.members.store import MemberStore

__all__ = [
    # Models
    "BaseGruppe",
    "BasePerson",
    "BaseStatus",
    # Services
    "MemberStore",
    "MemberUpdateResult",
    "ReconciliationEngine",
    "Saga",
    "make_placeholder_email",
]
