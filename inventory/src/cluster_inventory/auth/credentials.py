from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from ..model.entities import Account
from ..model.status import Provider
from ..util.errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AccountConfig:
    id: str
    name: str
    provider: Provider
    user: str = field(repr=False)
    key: str = field(repr=False)
    billing_enabled: bool = False

    def to_account(self) -> Account:
        return Account(
            id=self.id,
            name=self.name,
            provider=self.provider,
            user=self.user,
            password=self.key,
            billing_enabled=self.billing_enabled,
        )


def read_cloud_accounts(path: Path) -> List[AccountConfig]:
    """
    Read account credentials from an INI file, one section per account:

        [123456789012]
        name = prod
        provider = aws
        user = AKIA...
        key = ...
        billing_enabled = true

    The section name is the account id. The DEFAULT section is not an account.
    """
    if not path.exists():
        raise ConfigError(f"Credentials file not found: {path}")
    parser = configparser.ConfigParser(interpolation=None)
    try:
        with path.open("r", encoding="utf-8") as f:
            parser.read_file(f)
    except (configparser.Error, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to parse credentials file {path}: {e}") from e

    accounts: List[AccountConfig] = []
    for section in parser.sections():
        s = parser[section]
        accounts.append(
            AccountConfig(
                id=section.strip(),
                name=(s.get("name") or "").strip() or section.strip(),
                provider=Provider.parse(s.get("provider")),
                user=(s.get("user") or "").strip(),
                key=(s.get("key") or "").strip(),
                billing_enabled=(s.get("billing_enabled") or "").strip().lower() in _TRUE,
            )
        )
    return accounts
