"""Credential resolution and token generation tests."""

from unittest.mock import MagicMock

import pytest

from piawg.config import CredentialsConfig
from piawg.pia.api_client import AuthenticationError
from piawg.pia.auth import CredentialManager, PiaTokenGenerator, SessionToken


@pytest.fixture
def credentials_file(tmp_path):
    path = tmp_path / "credentials.properties"
    path.write_text("PIA_USER=p7654321\nPIA_PASS=from-file\n")
    return path


class TestCredentialManager:
    """Ordered credential sources."""

    def test_explicit_values_win(self, credentials_file):
        prompt = MagicMock()
        manager = CredentialManager(CredentialsConfig("p0000001", "from-env"), credentials_file,
                                    input_func=prompt, password_func=prompt)

        resolved = manager.resolve("p1234567", "explicit")

        assert (resolved.username, resolved.password) == ("p1234567", "explicit")
        prompt.assert_not_called()

    def test_configuration_before_file(self, credentials_file):
        manager = CredentialManager(CredentialsConfig("p0000001", "from-env"), credentials_file)

        resolved = manager.resolve(interactive=False)

        assert (resolved.username, resolved.password) == ("p0000001", "from-env")

    def test_properties_file(self, credentials_file):
        manager = CredentialManager(CredentialsConfig(), credentials_file)

        resolved = manager.resolve(interactive=False)

        assert (resolved.username, resolved.password) == ("p7654321", "from-file")

    def test_sources_mix_per_credential(self, credentials_file):
        manager = CredentialManager(CredentialsConfig(username="p0000001"), credentials_file)

        resolved = manager.resolve(interactive=False)

        assert (resolved.username, resolved.password) == ("p0000001", "from-file")

    def test_prompt_last(self, tmp_path):
        manager = CredentialManager(
            CredentialsConfig(), tmp_path / "missing.properties",
            input_func=lambda prompt: " p1111111 ",
            password_func=lambda prompt: "typed",
        )

        resolved = manager.resolve()

        assert (resolved.username, resolved.password) == ("p1111111", "typed")

    def test_missing_without_prompt(self, tmp_path):
        manager = CredentialManager(CredentialsConfig(), tmp_path / "missing.properties")

        with pytest.raises(AuthenticationError):
            manager.resolve(interactive=False)


class TestPiaTokenGenerator:
    """Token requests."""

    def test_generate_token(self, api_client):
        api_client.generate_token.return_value = {"token": "abc123"}

        token = PiaTokenGenerator(api_client).generate_token("p1234567", "secret")

        assert token == SessionToken("abc123")
        assert "abc123" not in repr(token)
        assert "abc123" not in str(token)

    def test_empty_password(self, api_client):
        with pytest.raises(AuthenticationError):
            PiaTokenGenerator(api_client).generate_token("p1234567", "")
        api_client.generate_token.assert_not_called()

    def test_unusual_username_still_tried(self, api_client):
        api_client.generate_token.return_value = {"token": "abc123"}

        PiaTokenGenerator(api_client).generate_token("someone", "secret")

        api_client.generate_token.assert_called_once_with("someone", "secret")

    def test_rejected_credentials(self, api_client):
        api_client.generate_token.side_effect = AuthenticationError("Authentication failed - invalid credentials", 401)

        with pytest.raises(AuthenticationError):
            PiaTokenGenerator(api_client).generate_token("p1234567", "wrong")
