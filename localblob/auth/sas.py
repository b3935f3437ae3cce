"""Shared Access Signature generation and validation for LocalBlob.

A SAS is a capability token scoped to the account, one container, or one blob.
It carries a permission set and a validity window, either directly in the
signed payload (ad-hoc SAS) or indirectly through a named stored access policy
on the container, which lets the policy owner revoke or edit every token bound
to it without rotating the account key.
"""

import base64
import binascii
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, Flag, auto
from typing import Callable, Dict, Optional
from urllib.parse import parse_qs, urlencode

from pydantic import BaseModel, Field, field_validator

from localblob.exceptions import InvalidArgumentError

from .exceptions import (
    SASBadSignatureError,
    SASExpiredError,
    SASNotYetValidError,
    SASPermissionDeniedError,
    SASPolicyRevokedError,
    SASValidationError,
)

logger = logging.getLogger(__name__)

SAS_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DEFAULT_SAS_VERSION = "2021-08-06"


class SASPermissions(Flag):
    """SAS permission bits."""

    NONE = 0
    READ = auto()
    CREATE = auto()
    WRITE = auto()
    DELETE = auto()
    LIST = auto()

    @classmethod
    def from_string(cls, value: str) -> "SASPermissions":
        """Parse a permission string such as ``"rwl"``.

        Raises:
            ValueError: If the string contains an unknown permission character
        """
        result = cls.NONE
        for char in value:
            if char not in _PERMISSION_BY_CHAR:
                raise ValueError(f"Unknown SAS permission: {char!r}")
            result |= _PERMISSION_BY_CHAR[char]
        return result

    def to_string(self) -> str:
        """Canonical permission string, in ``rcwdl`` order."""
        return "".join(char for char, perm in _PERMISSION_BY_CHAR.items() if perm in self)


_PERMISSION_BY_CHAR: Dict[str, SASPermissions] = {
    "r": SASPermissions.READ,
    "c": SASPermissions.CREATE,
    "w": SASPermissions.WRITE,
    "d": SASPermissions.DELETE,
    "l": SASPermissions.LIST,
}


class SASScope(str, Enum):
    """Resource scope a token is issued for."""

    ACCOUNT = "a"
    CONTAINER = "c"
    BLOB = "b"


class SASDecision(str, Enum):
    """Outcome of evaluating a token against a request."""

    OK = "ok"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    PERMISSION_DENIED = "permission_denied"
    BAD_SIGNATURE = "bad_signature"
    POLICY_REVOKED = "policy_revoked"


_ERROR_FOR_DECISION = {
    SASDecision.EXPIRED: SASExpiredError,
    SASDecision.NOT_YET_VALID: SASNotYetValidError,
    SASDecision.PERMISSION_DENIED: SASPermissionDeniedError,
    SASDecision.BAD_SIGNATURE: SASBadSignatureError,
    SASDecision.POLICY_REVOKED: SASPolicyRevokedError,
}


@dataclass(frozen=True)
class SASResource:
    """A resource a token is scoped to, or a request targets."""

    scope: SASScope
    container: Optional[str] = None
    blob: Optional[str] = None

    def __post_init__(self):
        if self.scope != SASScope.ACCOUNT and not self.container:
            raise ValueError("Container and blob scopes need a container name")
        if self.scope == SASScope.BLOB and not self.blob:
            raise ValueError("Blob scope needs a blob name")

    @classmethod
    def account(cls) -> "SASResource":
        return cls(SASScope.ACCOUNT)

    @classmethod
    def for_container(cls, container: str) -> "SASResource":
        return cls(SASScope.CONTAINER, container)

    @classmethod
    def for_blob(cls, container: str, blob: str) -> "SASResource":
        return cls(SASScope.BLOB, container, blob)

    def canonical(self, account_name: str) -> str:
        """Canonical resource path included in the string to sign."""
        path = f"/blob/{account_name}"
        if self.container:
            path += f"/{self.container}"
        if self.blob:
            path += f"/{self.blob}"
        return path

    def covers(self, requested: "SASResource") -> bool:
        """Whether a token scoped to this resource may act on ``requested``."""
        if self.scope == SASScope.ACCOUNT:
            return True
        if self.container != requested.container:
            return False
        if self.scope == SASScope.CONTAINER:
            return True
        return requested.scope == SASScope.BLOB and self.blob == requested.blob


class StoredAccessPolicy(BaseModel):
    """Named, container-level template for SAS permissions and validity."""

    id: str = Field(min_length=1, max_length=64)
    start: Optional[datetime] = None
    expiry: Optional[datetime] = None
    permission: Optional[str] = None

    @field_validator("permission")
    @classmethod
    def validate_permission(cls, v: Optional[str]) -> Optional[str]:
        """Normalize to canonical permission order."""
        if v is None:
            return v
        return SASPermissions.from_string(v).to_string()


@dataclass
class SASToken:
    """Parsed SAS token representation."""

    signed_version: str  # sv
    signed_scope: SASScope  # sr
    signed_resource: str  # scr
    signed_permissions: Optional[str]  # sp
    signed_start: Optional[str]  # st
    signed_expiry: Optional[str]  # se
    signed_identifier: Optional[str]  # si
    signature: str  # sig

    def string_to_sign(self) -> str:
        """Newline-joined signed fields, in fixed order."""
        return "\n".join(
            [
                self.signed_permissions or "",
                self.signed_start or "",
                self.signed_expiry or "",
                self.signed_resource,
                self.signed_identifier or "",
                self.signed_scope.value,
                self.signed_version,
            ]
        )

    def to_query(self) -> str:
        """Encode as a URL query string (without the leading '?')."""
        params = {
            "sv": self.signed_version,
            "sr": self.signed_scope.value,
            "scr": self.signed_resource,
            "sp": self.signed_permissions,
            "st": self.signed_start,
            "se": self.signed_expiry,
            "si": self.signed_identifier,
            "sig": self.signature,
        }
        return urlencode({k: v for k, v in params.items() if v})


def format_sas_time(value: datetime) -> str:
    """Format a datetime the way tokens carry it (UTC, second precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(SAS_TIME_FORMAT)


def parse_sas_time(value: str) -> datetime:
    """Parse a token timestamp.

    Raises:
        ValueError: If the value is not an ISO-8601 UTC timestamp
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_sas_token(token: str) -> SASToken:
    """Parse a SAS query string.

    Raises:
        SASBadSignatureError: If required parameters are missing or malformed
    """
    params = parse_qs(token.lstrip("?"), keep_blank_values=False)

    def get_param(key: str, required: bool = True) -> Optional[str]:
        values = params.get(key, [])
        if not values:
            if required:
                raise SASBadSignatureError(f"Missing required SAS parameter: {key}")
            return None
        return values[0]

    try:
        scope = SASScope(get_param("sr"))
    except ValueError as exc:
        raise SASBadSignatureError("Invalid signed resource scope") from exc

    return SASToken(
        signed_version=get_param("sv"),
        signed_scope=scope,
        signed_resource=get_param("scr"),
        signed_permissions=get_param("sp", required=False),
        signed_start=get_param("st", required=False),
        signed_expiry=get_param("se", required=False),
        signed_identifier=get_param("si", required=False),
        signature=get_param("sig"),
    )


class SharedKeySigner:
    """HMAC-SHA256 signer bound to one account key."""

    def __init__(self, account_name: str, account_key: str):
        """Initialize signer.

        Args:
            account_name: Storage account name
            account_key: Storage account key (base64-encoded)
        """
        self.account_name = account_name
        try:
            self._key_bytes = base64.b64decode(account_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Invalid account key format") from exc

    def sign(self, string_to_sign: str) -> str:
        """Return the base64 HMAC-SHA256 of ``string_to_sign``."""
        digest = hmac.new(self._key_bytes, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("utf-8")


class SASGenerator:
    """Issues SAS tokens signed with the account key."""

    def __init__(self, signer: SharedKeySigner, version: str = DEFAULT_SAS_VERSION):
        self.signer = signer
        self.version = version

    def generate(
        self,
        resource: SASResource,
        permissions: Optional[SASPermissions] = None,
        expiry: Optional[datetime] = None,
        start: Optional[datetime] = None,
        policy: Optional[StoredAccessPolicy] = None,
    ) -> str:
        """Sign a token for ``resource``.

        Each of permissions, start and expiry may come from the token or from
        the stored policy, never both.

        Args:
            resource: Scope the token grants access to
            permissions: Permission bits (ad-hoc tokens)
            expiry: End of the validity window (ad-hoc tokens)
            start: Optional start of the validity window
            policy: Stored access policy the token is bound to

        Returns:
            Token query string

        Raises:
            InvalidArgumentError: If a field is missing or given twice
        """
        if policy is not None:
            if resource.scope == SASScope.ACCOUNT:
                raise InvalidArgumentError("Account SAS cannot reference a stored access policy")
            for name, token_value, policy_value in (
                ("permissions", permissions, policy.permission),
                ("expiry", expiry, policy.expiry),
                ("start", start, policy.start),
            ):
                if token_value is not None and policy_value is not None:
                    raise InvalidArgumentError(
                        f"SAS {name} is set on both the token and stored policy '{policy.id}'"
                    )
            has_expiry = expiry is not None or policy.expiry is not None
            has_permissions = bool(permissions) or bool(policy.permission)
        else:
            has_expiry = expiry is not None
            has_permissions = bool(permissions)

        if not has_expiry:
            raise InvalidArgumentError("SAS requires an expiry time")
        if not has_permissions:
            raise InvalidArgumentError("SAS requires permissions")

        token = SASToken(
            signed_version=self.version,
            signed_scope=resource.scope,
            signed_resource=resource.canonical(self.signer.account_name),
            signed_permissions=permissions.to_string() if permissions is not None else None,
            signed_start=format_sas_time(start) if start else None,
            signed_expiry=format_sas_time(expiry) if expiry else None,
            signed_identifier=policy.id if policy else None,
            signature="",
        )
        token.signature = self.signer.sign(token.string_to_sign())
        return token.to_query()


PolicyLookup = Callable[[str, str], Optional[StoredAccessPolicy]]


class SASValidator:
    """Validator for SAS tokens presented with LocalBlob requests."""

    def __init__(self, signer: SharedKeySigner):
        self.signer = signer

    def _resource_from_token(self, token: SASToken) -> SASResource:
        prefix = f"/blob/{self.signer.account_name}"
        path = token.signed_resource
        if path != prefix and not path.startswith(prefix + "/"):
            raise SASBadSignatureError("Signed resource belongs to another account")
        parts = path[len(prefix) + 1:].split("/", 1) if path != prefix else []
        container = parts[0] if parts else None
        blob = parts[1] if len(parts) > 1 else None
        try:
            resource = SASResource(token.signed_scope, container, blob)
        except ValueError as exc:
            raise SASBadSignatureError(str(exc)) from exc
        if resource.canonical(self.signer.account_name) != path:
            raise SASBadSignatureError("Signed resource does not match signed scope")
        return resource

    def evaluate(
        self,
        token: str,
        requested_resource: SASResource,
        requested_permission: SASPermissions,
        now: Optional[datetime] = None,
        policy_lookup: Optional[PolicyLookup] = None,
    ) -> SASDecision:
        """Decide whether ``token`` authorizes the request.

        The request is authorized when the token grants any of the bits in
        ``requested_permission`` on a scope covering ``requested_resource``.

        Args:
            token: SAS query string
            requested_resource: Resource the request targets
            requested_permission: Permission bit(s) the operation needs
            now: Evaluation time (defaults to current UTC time)
            policy_lookup: Resolves ``(container, policy_id)`` to a stored policy

        Returns:
            SASDecision describing the outcome
        """
        now = now or datetime.now(timezone.utc)
        try:
            parsed = parse_sas_token(token)
            token_resource = self._resource_from_token(parsed)
        except SASValidationError:
            return SASDecision.BAD_SIGNATURE

        expected_sig = self.signer.sign(parsed.string_to_sign())
        if not hmac.compare_digest(expected_sig, parsed.signature):
            return SASDecision.BAD_SIGNATURE

        permissions_str = parsed.signed_permissions
        start_str = parsed.signed_start
        expiry_str = parsed.signed_expiry
        start: Optional[datetime] = None
        expiry: Optional[datetime] = None

        if parsed.signed_identifier:
            policy = None
            if policy_lookup is not None and token_resource.container:
                policy = policy_lookup(token_resource.container, parsed.signed_identifier)
            if policy is None:
                return SASDecision.POLICY_REVOKED
            if policy.permission is not None:
                if permissions_str is not None:
                    return SASDecision.BAD_SIGNATURE
                permissions_str = policy.permission
            if policy.start is not None:
                if start_str is not None:
                    return SASDecision.BAD_SIGNATURE
                start = policy.start
            if policy.expiry is not None:
                if expiry_str is not None:
                    return SASDecision.BAD_SIGNATURE
                expiry = policy.expiry

        try:
            if start_str:
                start = parse_sas_time(start_str)
            if expiry_str:
                expiry = parse_sas_time(expiry_str)
            granted = SASPermissions.from_string(permissions_str or "")
        except ValueError:
            return SASDecision.BAD_SIGNATURE

        if expiry is None:
            return SASDecision.BAD_SIGNATURE
        if start is not None and now < _aware(start):
            return SASDecision.NOT_YET_VALID
        if now >= _aware(expiry):
            return SASDecision.EXPIRED

        if not token_resource.covers(requested_resource):
            return SASDecision.PERMISSION_DENIED
        if not granted & requested_permission:
            return SASDecision.PERMISSION_DENIED

        return SASDecision.OK

    def validate(
        self,
        token: str,
        requested_resource: SASResource,
        requested_permission: SASPermissions,
        now: Optional[datetime] = None,
        policy_lookup: Optional[PolicyLookup] = None,
    ) -> None:
        """Perform complete SAS token validation.

        Raises:
            SASValidationError: Subclass matching the failed check
        """
        decision = self.evaluate(
            token,
            requested_resource,
            requested_permission,
            now=now,
            policy_lookup=policy_lookup,
        )
        if decision != SASDecision.OK:
            logger.warning(
                f"SAS rejected ({decision.value}) for {requested_resource.canonical(self.signer.account_name)} "
                f"requiring '{requested_permission.to_string()}'"
            )
            raise _ERROR_FOR_DECISION[decision]()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
