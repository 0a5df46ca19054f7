#!/usr/bin/env python3

"""
PIA Authentication Module

Credential resolution and token generation for PIA. Replaces the
credentials.properties handling and the token curl call of the bash
config generators.

Features:
- Credential resolution from an ordered chain of sources
  (explicit values, environment/config file, properties file, prompt)
- Credential format validation
- Token generation via the PIA API

The session token is kept in memory only and never logged or written to
disk.
"""

import getpass
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..config import CredentialsConfig, first_non_empty
from ..logger import log_message
from ..utils import read_properties_file
from .api_client import PiaApiClient, AuthenticationError


@dataclass(frozen=True)
class SessionToken:
    """Opaque PIA authentication token."""
    value: str = field(repr=False)

    def __str__(self):
        return "<SessionToken>"


class CredentialManager:
    """
    Resolves PIA credentials.

    Each credential is taken from the first source that has it:
    explicit value, configuration (JSON file or PIA_USER / PIA_PASS),
    properties file, then an interactive prompt.
    """

    def __init__(self, credentials: Optional[CredentialsConfig] = None,
                 credentials_file: Optional[Path] = None,
                 input_func: Callable[[str], str] = input,
                 password_func: Callable[[str], str] = getpass.getpass):
        self.credentials = credentials or CredentialsConfig()
        self.credentials_file = Path(credentials_file) if credentials_file else None
        self.input_func = input_func
        self.password_func = password_func

    def _from_file(self, key: str) -> Optional[str]:
        if not self.credentials_file:
            return None
        value = read_properties_file(self.credentials_file).get(key)
        if value:
            log_message(5, f"Read {key} from credentials file: {self.credentials_file}")
        return value

    def resolve(self, username: Optional[str] = None, password: Optional[str] = None,
                interactive: bool = True) -> CredentialsConfig:
        """
        Resolve username and password.

        Raises:
            AuthenticationError: If either credential is still missing
        """
        prompt_user = (lambda: self.input_func("PIA username: ").strip()) if interactive else (lambda: None)
        prompt_pass = (lambda: self.password_func("PIA password: ")) if interactive else (lambda: None)

        resolved_user = first_non_empty([
            lambda: username,
            lambda: self.credentials.username,
            lambda: self._from_file('PIA_USER'),
            prompt_user,
        ])
        resolved_pass = first_non_empty([
            lambda: password,
            lambda: self.credentials.password,
            lambda: self._from_file('PIA_PASS'),
            prompt_pass,
        ])

        if not resolved_user or not resolved_pass:
            raise AuthenticationError("PIA username and password are required")

        return CredentialsConfig(username=resolved_user, password=resolved_pass)


class PiaTokenGenerator:
    """
    PIA token generation.

    Replaces the curl token request of the bash scripts with:
    - Credential validation
    - Token generation via PIA API
    """

    def __init__(self, api_client: Optional[PiaApiClient] = None):
        """Initialize token generator."""
        self.api_client = api_client or PiaApiClient()

    def validate_credentials(self, username: str, password: str) -> bool:
        """
        Validate PIA credentials format.

        Args:
            username: PIA username (normally p#######)
            password: PIA password

        Returns:
            True if both are present; an unusual username format only warns
        """
        if not username or not password:
            log_message(1, "PIA username and password must not be empty")
            return False

        if len(username) != 8 or not username.lower().startswith('p') or not username[1:].isdigit():
            log_message(1, f"Warning: PIA username {username!r} does not look like p#######")

        return True

    def generate_token(self, username: str, password: str) -> SessionToken:
        """
        Generate authentication token from PIA credentials.

        Args:
            username: PIA username
            password: PIA password

        Returns:
            Session token

        Raises:
            AuthenticationError: For invalid credentials
            ApiError: For other API errors
        """
        if not self.validate_credentials(username, password):
            raise AuthenticationError("Invalid credential format")

        try:
            token_data = self.api_client.generate_token(username, password)
        except AuthenticationError:
            log_message(1, f"Authentication failed for user: {username}")
            raise

        return SessionToken(token_data['token'])
