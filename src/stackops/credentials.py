"""Resolve credential references into secrets.

A reference names where the secret lives, never the secret itself:

- ``env:NAME`` reads an environment variable,
- ``file:/path`` reads a file that must not be group or world readable,
- ``secretsmanager:<secret id>`` reads an AWS Secrets Manager secret.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import SecretStr

from stackops.config import AWSSettings
from stackops.errors import ConfigurationError

logger = logging.getLogger(__name__)


def resolve_credential(ref: str, aws: AWSSettings | None = None) -> SecretStr:
    scheme, sep, target = ref.partition(":")
    if not sep or not target:
        raise ConfigurationError(
            "Credential reference must look like env:NAME, file:/path or secretsmanager:<id>"
        )
    scheme = scheme.strip().lower()
    target = target.strip()

    if scheme == "env":
        value = os.getenv(target)
        if value is None:
            raise ConfigurationError(f"Credential environment variable {target} is not set")
        return SecretStr(value)

    if scheme == "file":
        return _read_credential_file(Path(target).expanduser())

    if scheme == "secretsmanager":
        return _read_secrets_manager(target, aws or AWSSettings())

    raise ConfigurationError(f"Unsupported credential scheme: {scheme}")


def _read_credential_file(path: Path) -> SecretStr:
    try:
        mode = path.stat().st_mode
    except OSError as exc:
        raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise ConfigurationError(
            f"Credential file {path} is accessible by group/others; chmod 600 it"
        )
    try:
        value = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc
    return SecretStr(value.rstrip("\r\n"))


def _read_secrets_manager(secret_id: str, aws: AWSSettings) -> SecretStr:
    session = boto3.Session(
        profile_name=aws.default_profile,
        region_name=aws.default_region,
    )
    client = session.client("secretsmanager")
    try:
        response = client.get_secret_value(SecretId=secret_id)
    except (BotoCoreError, ClientError) as exc:
        raise ConfigurationError(f"Cannot read secret {secret_id}: {exc}") from exc
    value = response.get("SecretString")
    if value is None:
        raise ConfigurationError(f"Secret {secret_id} has no string value")
    logger.debug("Resolved credential from Secrets Manager secret %s", secret_id)
    return SecretStr(value)
