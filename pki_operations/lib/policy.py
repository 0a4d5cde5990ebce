"""CA hierarchy model, signing profiles and policy documents."""

import configparser
import io
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from .config import CAConfig, DistinguishedName
from .errors import PolicyViolation, UnknownCA

AUTH_KEY_NAME = "primary"

ROOT_PATH_LENGTH = 2
INTERMEDIATE_PATH_LENGTH = 1

LEAF_BASE_USAGES = ("signing", "digital signature", "key encipherment")
CA_USAGES = ("signing", "digital signature", "key encipherment", "cert sign", "crl sign")


class CAKind(str, Enum):
    ROOT = "root"
    INTERMEDIATE = "intermediate"


def hours(value: int) -> str:
    """Render an hour count the way policy documents store durations."""
    return f"{value}h"


@dataclass(frozen=True)
class SigningProfile:
    """Named signing policy (usages + expiry) a CA exposes."""

    name: str
    usages: tuple[str, ...]
    expiry_hours: int
    is_ca: bool = False
    max_path_len: int | None = None
    auth_key: str | None = None

    @property
    def expiry(self) -> timedelta:
        return timedelta(hours=self.expiry_hours)

    @property
    def requires_auth(self) -> bool:
        return self.auth_key is not None

    def to_document(self) -> dict:
        document: dict = {"usages": list(self.usages), "expiry": hours(self.expiry_hours)}
        if self.is_ca:
            document["ca_constraint"] = {"is_ca": True, "max_path_len": self.max_path_len}
        if self.auth_key is not None:
            document["auth_key"] = self.auth_key
        return document


@dataclass(frozen=True)
class CSRSpec:
    """Input to the CA engine for key + CSR (or self-signed) generation."""

    subject: DistinguishedName
    key_algo: str = "rsa"
    key_size: int = 4096
    hosts: tuple[str, ...] = ()
    is_ca: bool = False
    path_length: int | None = None
    expiry_hours: int | None = None

    def to_document(self) -> dict:
        document: dict = {
            "CN": self.subject.common_name,
            "key": {"algo": self.key_algo, "size": self.key_size},
            "names": [self.subject.to_names_entry()],
        }
        if self.hosts:
            document["hosts"] = list(self.hosts)
        if self.is_ca:
            document["ca"] = {
                "expiry": hours(self.expiry_hours or 0),
                "pathlen": self.path_length,
            }
        return document


@dataclass(frozen=True)
class CertificateAuthority:
    """One CA of the hierarchy.

    ``label`` is the on-disk name (``intermediate-1``); ``engine_label`` is
    the form used on the wire and in the multi-root mapping (``intermediate_1``).
    """

    label: str
    kind: CAKind
    validity_hours: int
    path_length: int
    profiles: dict[str, SigningProfile] = field(default_factory=dict)
    issuer: str | None = None
    key_algo: str = "rsa"

    @property
    def engine_label(self) -> str:
        return self.label.replace("-", "_")

    @property
    def validity(self) -> timedelta:
        return timedelta(hours=self.validity_hours)

    @property
    def requires_auth(self) -> bool:
        return any(p.requires_auth for p in self.profiles.values())

    def profile(self, name: str) -> SigningProfile:
        try:
            return self.profiles[name]
        except KeyError:
            raise PolicyViolation(f"CA '{self.label}' has no profile '{name}'") from None

    def csr_spec(self, subject: DistinguishedName, key_size: int) -> CSRSpec:
        return CSRSpec(
            subject=subject,
            key_algo=self.key_algo,
            key_size=key_size,
            is_ca=True,
            path_length=self.path_length,
            expiry_hours=self.validity_hours,
        )

    def signing_document(self, auth_secret: str | None = None) -> dict:
        """Signing policy document for this CA.

        Intermediates embed their AuthSecret under ``auth_keys``.
        """
        default: dict = {"expiry": hours(self._default_expiry_hours())}
        if self.requires_auth:
            default["auth_key"] = AUTH_KEY_NAME
        document: dict = {
            "signing": {
                "default": default,
                "profiles": {name: p.to_document() for name, p in self.profiles.items()},
            }
        }
        if self.requires_auth:
            if auth_secret is None:
                raise PolicyViolation(f"CA '{self.label}' requires an auth secret")
            document["auth_keys"] = {AUTH_KEY_NAME: {"type": "standard", "key": auth_secret}}
        return document

    def _default_expiry_hours(self) -> int:
        if self.kind is CAKind.ROOT:
            return self.validity_hours
        leaf_expiries = [p.expiry_hours for p in self.profiles.values() if not p.is_ca]
        return min(leaf_expiries) if leaf_expiries else self.validity_hours


def leaf_profiles(expiry_hours: int, auth_key: str | None = AUTH_KEY_NAME) -> dict[str, SigningProfile]:
    """The ``server``, ``client`` and ``peer`` profiles exposed by intermediates."""
    return {
        "server": SigningProfile(
            name="server",
            usages=LEAF_BASE_USAGES + ("server auth",),
            expiry_hours=expiry_hours,
            auth_key=auth_key,
        ),
        "client": SigningProfile(
            name="client",
            usages=LEAF_BASE_USAGES + ("client auth",),
            expiry_hours=expiry_hours,
            auth_key=auth_key,
        ),
        "peer": SigningProfile(
            name="peer",
            usages=LEAF_BASE_USAGES + ("server auth", "client auth"),
            expiry_hours=expiry_hours,
            auth_key=auth_key,
        ),
    }


def intermediate_profile(expiry_hours: int, max_path_len: int) -> SigningProfile:
    return SigningProfile(
        name="intermediate",
        usages=CA_USAGES,
        expiry_hours=expiry_hours,
        is_ca=True,
        max_path_len=max_path_len,
    )


class PolicyStore:
    """Configured CAs, validated once at construction.

    Lookups accept either the on-disk label or the engine label.
    """

    def __init__(self, authorities: Iterable[CertificateAuthority]) -> None:
        self._authorities: dict[str, CertificateAuthority] = {}
        for ca in authorities:
            if ca.label in self._authorities:
                raise PolicyViolation(f"duplicate CA label '{ca.label}'")
            self._authorities[ca.label] = ca
        self._validate()

    @classmethod
    def from_config(cls, config: CAConfig) -> "PolicyStore":
        root = CertificateAuthority(
            label="root-ca",
            kind=CAKind.ROOT,
            validity_hours=config.root_validity_hours,
            path_length=config.root_path_length,
            profiles={
                "intermediate": intermediate_profile(
                    config.intermediate_validity_hours, config.intermediate_path_length
                )
            },
        )
        intermediates = [
            CertificateAuthority(
                label=name,
                kind=CAKind.INTERMEDIATE,
                validity_hours=config.intermediate_validity_hours,
                path_length=config.intermediate_path_length,
                profiles=leaf_profiles(config.leaf_validity_hours),
                issuer=root.label,
            )
            for name in config.intermediate_names
        ]
        return cls([root, *intermediates])

    def _validate(self) -> None:
        roots = [ca for ca in self._authorities.values() if ca.kind is CAKind.ROOT]
        if len(roots) != 1:
            raise PolicyViolation(f"exactly one root CA required, found {len(roots)}")
        root = roots[0]

        if root.issuer is not None:
            raise PolicyViolation("root CA must not have an issuer")
        if root.path_length != ROOT_PATH_LENGTH:
            raise PolicyViolation(
                f"root CA path length must be {ROOT_PATH_LENGTH}, got {root.path_length}"
            )

        for ca in self._authorities.values():
            self._validate_profiles(ca)
            if ca.kind is CAKind.ROOT:
                continue

            if ca.path_length != INTERMEDIATE_PATH_LENGTH:
                raise PolicyViolation(
                    f"intermediate '{ca.label}' path length must be "
                    f"{INTERMEDIATE_PATH_LENGTH}, got {ca.path_length}"
                )
            if ca.issuer is None or ca.issuer not in self._authorities:
                raise PolicyViolation(f"intermediate '{ca.label}' has unknown issuer {ca.issuer!r}")
            issuer = self._authorities[ca.issuer]
            if ca.path_length >= issuer.path_length:
                raise PolicyViolation(
                    f"intermediate '{ca.label}' path length {ca.path_length} must be "
                    f"less than issuer '{issuer.label}' path length {issuer.path_length}"
                )
            if ca.validity_hours > issuer.validity_hours:
                raise PolicyViolation(
                    f"intermediate '{ca.label}' expiry {hours(ca.validity_hours)} exceeds "
                    f"issuer '{issuer.label}' expiry {hours(issuer.validity_hours)}"
                )

    @staticmethod
    def _validate_profiles(ca: CertificateAuthority) -> None:
        for profile in ca.profiles.values():
            if profile.expiry_hours > ca.validity_hours:
                raise PolicyViolation(
                    f"profile '{profile.name}' expiry {hours(profile.expiry_hours)} exceeds "
                    f"CA '{ca.label}' expiry {hours(ca.validity_hours)}"
                )
            if profile.is_ca:
                if ca.kind is not CAKind.ROOT:
                    raise PolicyViolation(
                        f"CA profile '{profile.name}' is only producible by the root CA"
                    )
                if profile.max_path_len is None or profile.max_path_len >= ca.path_length:
                    raise PolicyViolation(
                        f"profile '{profile.name}' max_path_len must be less than "
                        f"{ca.path_length}"
                    )
            elif ca.kind is CAKind.INTERMEDIATE and not profile.requires_auth:
                raise PolicyViolation(
                    f"profile '{profile.name}' of '{ca.label}' must require an auth key"
                )

    def get(self, label: str) -> CertificateAuthority:
        """Return CA policy by label.

        Raises:
            UnknownCA: If the label is not one of the configured CAs
        """
        if label in self._authorities:
            return self._authorities[label]
        for ca in self._authorities.values():
            if ca.engine_label == label:
                return ca
        raise UnknownCA(f"unknown CA label '{label}'")

    @property
    def root(self) -> CertificateAuthority:
        return next(ca for ca in self._authorities.values() if ca.kind is CAKind.ROOT)

    @property
    def intermediates(self) -> list[CertificateAuthority]:
        """Intermediates in configuration order."""
        return [ca for ca in self._authorities.values() if ca.kind is CAKind.INTERMEDIATE]

    def multiroot_config(self, config: CAConfig) -> str:
        """Render the label -> key/cert/policy mapping for the multi-root engine."""
        parser = configparser.ConfigParser(interpolation=None)
        for ca in self.intermediates:
            ca_dir = config.intermediate_dir / ca.label
            parser[ca.engine_label] = {
                "private": (ca_dir / f"{ca.label}-key.pem").absolute().as_uri(),
                "certificate": str(ca_dir / f"{ca.label}.pem"),
                "config": str(config.config_dir / f"{ca.label}-config.json"),
            }
        buffer = io.StringIO()
        parser.write(buffer)
        return buffer.getvalue()

