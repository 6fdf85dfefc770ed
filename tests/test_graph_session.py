from __future__ import annotations

import os
import unittest
from unittest.mock import MagicMock, patch

from directory import session as session_module
from exceptions import AuthError


class GraphSessionTests(unittest.TestCase):
    def _patch_msal(self, result):
        app = MagicMock()
        app.acquire_token_for_client.return_value = result
        patcher = patch.object(session_module.msal, "ConfidentialClientApplication", return_value=app)
        factory = patcher.start()
        self.addCleanup(patcher.stop)
        return factory, app

    def test_acquire_token_returns_access_token(self) -> None:
        factory, app = self._patch_msal({"access_token": "abc"})

        token = session_module.acquire_token(tenant_id="tenant", client_id="client", client_secret="secret")

        self.assertEqual(token, "abc")
        factory.assert_called_once_with(
            client_id="client",
            client_credential="secret",
            authority="https://login.microsoftonline.com/tenant",
        )
        app.acquire_token_for_client.assert_called_once_with(
            scopes=["https://graph.microsoft.com/.default"]
        )

    def test_rejected_sign_in_raises_auth_error(self) -> None:
        self._patch_msal({"error": "invalid_client", "error_description": "AADSTS7000215: Invalid client secret"})

        with self.assertRaises(AuthError) as ctx:
            session_module.acquire_token(tenant_id="t", client_id="c", client_secret="s")

        self.assertIn("AADSTS7000215", str(ctx.exception))

    def test_missing_credentials_are_a_precondition_failure(self) -> None:
        factory, _ = self._patch_msal({"access_token": "unused"})
        cleared = {name: "" for name in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")}

        with patch.dict(os.environ, cleared):
            with self.assertRaises(EnvironmentError) as ctx:
                session_module.acquire_token()

        self.assertIn("AZURE_TENANT_ID", str(ctx.exception))
        factory.assert_not_called()

    def test_open_graph_session_sets_bearer_header(self) -> None:
        graph_session = session_module.open_graph_session("export", token="abc")

        self.assertEqual(graph_session.headers["Authorization"], "Bearer abc")


if __name__ == "__main__":
    unittest.main()
