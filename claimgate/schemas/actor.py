"""
Actor Schema

Everyone who changes state is a registered actor with a role and an
Ed25519 public key. The key is fixed at registration and never changes.
"""

from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    ADMIN = "admin"
    CLAIM_PROCESSOR = "claim_processor"
    ORACLE = "oracle"
    USER = "user"


class Capability(str, Enum):
    ADMINISTER = "administer"
    PROCESS_CLAIMS = "process_claims"
    SUBMIT_ORACLE_DATA = "submit_oracle_data"
    SUBMIT_CLAIM = "submit_claim"
    RESOLVE = "resolve"


# Permission matrix. Claim processors may not file claims themselves.
ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.CLAIM_PROCESSOR: frozenset({Capability.PROCESS_CLAIMS, Capability.RESOLVE}),
    Role.ORACLE: frozenset({Capability.SUBMIT_ORACLE_DATA, Capability.RESOLVE}),
    Role.USER: frozenset({Capability.SUBMIT_CLAIM, Capability.RESOLVE}),
}


def role_allows(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES[role]
