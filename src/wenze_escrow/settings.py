"""Runtime settings for the escrow client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .config import (
    BLOCKFROST_URLS,
    CONFIRMATION_POLL_INTERVAL,
    CONFIRMATION_TIMEOUT,
    DEFAULT_ESCROW_DEADLINE_HOURS,
    MIN_CONFIRMATIONS,
    VALIDITY_LOWER_BOUND_OFFSET,
)
from .errors import ErrorCode, EscrowError
from .types import Network


def _invalid(message: str) -> EscrowError:
    return EscrowError(ErrorCode.INVALID_INPUT, message)


def _network(value: Any) -> Network:
    try:
        return Network(str(value).strip().lower())
    except ValueError as exc:
        raise _invalid(f"unknown network: {value!r}") from exc


def _number(name: str, value: Any, cast=float):
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise _invalid(f"{name} must be a number, got {value!r}") from exc


@dataclass
class EscrowSettings:
    network: Network = Network.TESTNET
    blockfrost_project_id: str = ""
    blockfrost_url: Optional[str] = None
    script_path: Optional[str] = None
    validator_title: Optional[str] = None

    min_confirmations: int = MIN_CONFIRMATIONS
    confirmation_timeout: float = CONFIRMATION_TIMEOUT
    poll_interval: float = CONFIRMATION_POLL_INTERVAL

    default_deadline_hours: int = DEFAULT_ESCROW_DEADLINE_HOURS
    validity_offset: int = VALIDITY_LOWER_BOUND_OFFSET

    @property
    def indexer_url(self) -> str:
        return self.blockfrost_url or BLOCKFROST_URLS[self.network.value]

    def validate(self) -> "EscrowSettings":
        if self.min_confirmations < 1:
            raise _invalid("min_confirmations must be >= 1")
        if self.confirmation_timeout <= 0:
            raise _invalid("confirmation_timeout must be > 0")
        if self.poll_interval <= 0:
            raise _invalid("poll_interval must be > 0")
        if self.default_deadline_hours <= 0:
            raise _invalid("default_deadline_hours must be > 0")
        if self.validity_offset < 1:
            raise _invalid("validity_offset must be >= 1")
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EscrowSettings":
        settings = cls()
        if "network" in data:
            settings.network = _network(data["network"])
        for key in ("blockfrost_project_id", "blockfrost_url", "script_path", "validator_title"):
            if data.get(key) is not None:
                setattr(settings, key, str(data[key]))
        for key in ("min_confirmations", "default_deadline_hours", "validity_offset"):
            if data.get(key) is not None:
                setattr(settings, key, _number(key, data[key], int))
        for key in ("confirmation_timeout", "poll_interval"):
            if data.get(key) is not None:
                setattr(settings, key, _number(key, data[key]))
        return settings.validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EscrowSettings":
        """Load settings from ESCROW_* / BLOCKFROST_* environment variables."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {
            "network": env.get("ESCROW_NETWORK", Network.TESTNET.value),
            "blockfrost_project_id": env.get("BLOCKFROST_PROJECT_ID"),
            "blockfrost_url": env.get("BLOCKFROST_URL"),
            "script_path": env.get("ESCROW_SCRIPT_PATH"),
            "validator_title": env.get("ESCROW_VALIDATOR_TITLE"),
            "min_confirmations": env.get("ESCROW_MIN_CONFIRMATIONS"),
            "confirmation_timeout": env.get("ESCROW_CONFIRMATION_TIMEOUT"),
            "poll_interval": env.get("ESCROW_POLL_INTERVAL"),
            "default_deadline_hours": env.get("ESCROW_DEADLINE_HOURS"),
            "validity_offset": env.get("ESCROW_VALIDITY_OFFSET"),
        }
        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path) -> "EscrowSettings":
        try:
            with open(Path(path), encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as exc:
            raise _invalid(f"cannot read settings file: {exc}") from exc
        except yaml.YAMLError as exc:
            raise _invalid(f"settings file is not valid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise _invalid("settings file must hold a mapping")
        # Allow the settings under an `escrow:` section
        if isinstance(data.get("escrow"), dict):
            data = data["escrow"]
        return cls.from_mapping(data)
